"""Unit tests for the lead queue service.

Tests cover:
1. Lead creation and image-set dedupe
2. Listing and filtering
3. Claim ownership, including racing claimants
4. The remaining state transitions
5. Completion feeding the training sink
"""

import threading

import pytest
from sqlalchemy import event, text
from sqlalchemy.orm import sessionmaker

from quotedesk_core.domain.models import LeadSource, LeadStatus, QueueLead, TrainingExample
from quotedesk_core.domain.schemas.analysis import (
    ProductTrainingData,
    SavedProductGroup,
    SelectedService,
    TrainingService,
)
from quotedesk_core.domain.services.image_grouping import ImageGroup
from quotedesk_core.domain.services.lead_queue import (
    AlreadyClaimed,
    InvalidTransition,
    LeadNotFound,
    LeadQueueService,
    compute_image_set_key,
)
from quotedesk_core.domain.services.matching import MatchConfidence, MatchResult
from quotedesk_core.domain.services.training import DatabaseTrainingSink

from tests.factories import (
    at,
    create_lead,
    make_conversation,
    make_image,
    make_order,
    make_text,
)


@pytest.fixture
def service(db_session) -> LeadQueueService:
    return LeadQueueService(db=db_session, training_sink=DatabaseTrainingSink(db_session))


def product_group(group_id: str = "item-1") -> SavedProductGroup:
    return SavedProductGroup(
        id=group_id,
        image_ids=["img-1"],
        selected_services=[
            SelectedService(service_id="svc-heel", service_name="Heel repair", price=40),
            SelectedService(service_id="svc-clean", service_name="Deep clean", price=25),
        ],
    )


# =============================================================================
# CREATE
# =============================================================================


class TestImageSetKey:
    def test_order_insensitive(self):
        assert compute_image_set_key(["b", "a"]) == compute_image_set_key(["a", "b"])

    def test_duplicates_ignored(self):
        assert compute_image_set_key(["a", "a", "b"]) == compute_image_set_key(["a", "b"])

    def test_different_sets(self):
        assert compute_image_set_key(["a"]) != compute_image_set_key(["a", "b"])


class TestCreateLead:
    """Tests for queueing image groups."""

    def test_create_from_group(self, service, db_session):
        conversation = make_conversation("conv-9", "Mona Ali", "+971 50 555 0000")
        group = ImageGroup(
            messages=(make_image("i1", at(0), caption="Left shoe"), make_image("i2", at(5)))
        )

        created = service.create_from_group(
            conversation=conversation,
            group=group,
            context_messages=[make_text("t1", at(-2), text="Can you fix this?")],
        )

        assert created is True
        lead = db_session.query(QueueLead).one()
        assert lead.status == LeadStatus.NEW
        assert lead.source == LeadSource.CONVERSATION
        assert lead.conversation_id == "conv-9"
        assert lead.phone_key == "505550000"
        assert lead.image_count == 2
        assert lead.images[0]["message_id"] == "i1"
        assert lead.images[0]["url"] == "https://cdn.test/i1.jpg"
        assert lead.images[0]["caption"] == "Left shoe"
        assert lead.context_messages == [
            {
                "direction": "from_customer",
                "type": "text",
                "text": "Can you fix this?",
                "timestamp": at(-2).isoformat(),
            }
        ]
        assert lead.first_image_at == at(0).replace(tzinfo=None)
        assert lead.last_image_at == at(5).replace(tzinfo=None)
        assert lead.claimed_by is None

    def test_same_images_are_queued_once(self, service, db_session):
        conversation = make_conversation()
        group = ImageGroup(messages=(make_image("i1", at(0)), make_image("i2", at(5))))
        reordered = ImageGroup(messages=(make_image("i2", at(5)), make_image("i1", at(0))))

        assert service.create_from_group(conversation, group) is True
        assert service.create_from_group(conversation, reordered) is False
        assert db_session.query(QueueLead).count() == 1

    def test_empty_group_is_ignored(self, service, db_session):
        assert service.create_from_group(make_conversation(), ImageGroup(messages=())) is False
        assert db_session.query(QueueLead).count() == 0

    def test_create_from_match(self, service, db_session):
        group = ImageGroup(messages=(make_image("i1", at(-30)),))
        match = MatchResult(
            order=make_order(),
            conversation=make_conversation(),
            confidence=MatchConfidence.MEDIUM,
            name_score=55,
            image_group=group,
            image_groups=(group,),
        )

        assert service.create_from_match(match) is True
        assert service.create_from_match(match) is False

        lead = db_session.query(QueueLead).one()
        assert lead.source == LeadSource.ORDER_MATCH
        assert lead.order_id == "gid://shopify/Order/1001"
        assert lead.order_name == "#1001"
        assert lead.match_confidence == "medium"
        assert lead.name_score == 55

    def test_insert_race_on_image_set_key(self, db_session):
        """A lead inserted after the pre-check loses on the unique key."""
        service = LeadQueueService(db=db_session)
        create_lead(db_session, image_ids=("i1",))
        service.get_by_image_set_key = lambda key: None

        group = ImageGroup(messages=(make_image("i1", at(0)),))

        assert service.create_from_group(make_conversation(), group) is False
        assert db_session.query(QueueLead).count() == 1


# =============================================================================
# READ
# =============================================================================


class TestListLeads:
    """Tests for listing leads."""

    def test_newest_photos_first(self, service, db_session):
        old = create_lead(db_session, image_ids=("a",), first_image_at=at(-60))
        new = create_lead(db_session, image_ids=("b",), first_image_at=at(0))

        leads, total = service.list_leads()

        assert total == 2
        assert [lead.id for lead in leads] == [new.id, old.id]

    def test_status_filter(self, service, db_session):
        create_lead(db_session, image_ids=("a",))
        claimed = create_lead(
            db_session, image_ids=("b",), status=LeadStatus.CLAIMED, claimed_by="alice"
        )

        leads, total = service.list_leads(status=LeadStatus.CLAIMED)
        assert total == 1
        assert leads[0].id == claimed.id

        _, total_all = service.list_leads(status="all")
        assert total_all == 2

    def test_claimed_by_filter(self, service, db_session):
        create_lead(db_session, image_ids=("a",), status=LeadStatus.CLAIMED, claimed_by="alice")
        create_lead(db_session, image_ids=("b",), status=LeadStatus.CLAIMED, claimed_by="bob")

        leads, total = service.list_leads(claimed_by="bob")

        assert total == 1
        assert leads[0].claimed_by == "bob"

    def test_pagination(self, service, db_session):
        for i in range(5):
            create_lead(db_session, image_ids=(f"img-{i}",), first_image_at=at(i))

        leads, total = service.list_leads(offset=1, limit=2)

        assert total == 5
        assert [lead.image_set_key for lead in leads] == [
            compute_image_set_key([f"img-{i}"]) for i in (3, 2)
        ]

    def test_get_not_found(self, service):
        with pytest.raises(LeadNotFound):
            service.get(999)


# =============================================================================
# CLAIM
# =============================================================================


class TestClaim:
    """Tests for exclusive ownership."""

    def test_claim_new_lead(self, service, db_session):
        lead = create_lead(db_session)

        claimed = service.claim(lead.id, "alice")

        assert claimed.status == LeadStatus.CLAIMED
        assert claimed.claimed_by == "alice"
        assert claimed.claimed_at is not None

    def test_reclaim_by_holder_is_idempotent(self, service, db_session):
        lead = create_lead(db_session)
        first = service.claim(lead.id, "alice")
        claimed_at = first.claimed_at

        again = service.claim(lead.id, "alice")

        assert again.claimed_by == "alice"
        assert again.claimed_at == claimed_at

    def test_claim_held_by_someone_else(self, service, db_session):
        lead = create_lead(db_session)
        service.claim(lead.id, "alice")

        with pytest.raises(AlreadyClaimed) as exc_info:
            service.claim(lead.id, "bob")

        assert exc_info.value.holder == "alice"
        assert "taken by alice" in str(exc_info.value)
        assert service.get(lead.id).claimed_by == "alice"

    def test_claim_missing_lead(self, service):
        with pytest.raises(LeadNotFound):
            service.claim(404, "alice")

    @pytest.mark.parametrize("status", [LeadStatus.COMPLETED, LeadStatus.SKIPPED])
    def test_claim_terminal_lead(self, service, db_session, status):
        lead = create_lead(db_session, status=status)

        with pytest.raises(InvalidTransition):
            service.claim(lead.id, "alice")

    def test_claim_requires_staff_id(self, service, db_session):
        lead = create_lead(db_session)

        with pytest.raises(ValueError):
            service.claim(lead.id, "")

    def test_stale_reader_loses_claim(self, file_engine):
        """A claimant holding a stale copy of the lead still loses the race."""
        factory = sessionmaker(bind=file_engine, autoflush=False, expire_on_commit=False)

        setup = factory()
        lead_id = create_lead(setup).id
        setup.commit()
        setup.close()

        session_a = factory()
        session_b = factory()
        try:
            # Both staff members open the lead while it is still new
            assert session_a.get(QueueLead, lead_id).status == LeadStatus.NEW
            stale = session_b.get(QueueLead, lead_id)
            assert stale.status == LeadStatus.NEW
            session_a.commit()
            session_b.commit()

            LeadQueueService(session_a).claim(lead_id, "alice")
            session_a.commit()

            with pytest.raises(AlreadyClaimed) as exc_info:
                LeadQueueService(session_b).claim(lead_id, "bob")
            session_b.rollback()

            assert exc_info.value.holder == "alice"
            assert stale.claimed_by == "alice"
        finally:
            session_a.close()
            session_b.close()

    def test_concurrent_claims_have_one_winner(self, immediate_engine):
        factory = sessionmaker(bind=immediate_engine, autoflush=False)

        setup = factory()
        lead_id = create_lead(setup).id
        setup.commit()
        setup.close()

        staff = [f"staff-{i}" for i in range(6)]
        barrier = threading.Barrier(len(staff))
        winners: list[str] = []
        losers: list[str] = []
        errors: list[BaseException] = []
        lock = threading.Lock()

        def attempt(staff_id: str) -> None:
            session = factory()
            try:
                barrier.wait()
                LeadQueueService(session).claim(lead_id, staff_id)
                session.commit()
                with lock:
                    winners.append(staff_id)
            except AlreadyClaimed:
                session.rollback()
                with lock:
                    losers.append(staff_id)
            except BaseException as e:
                session.rollback()
                with lock:
                    errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=attempt, args=(s,)) for s in staff]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        assert errors == []
        assert len(winners) == 1
        assert len(losers) == len(staff) - 1

        check = factory()
        try:
            lead = check.get(QueueLead, lead_id)
            assert lead.claimed_by == winners[0]
            assert lead.status == LeadStatus.CLAIMED
        finally:
            check.close()


# =============================================================================
# TRANSITIONS
# =============================================================================


class TestUnclaim:
    def test_unclaim_returns_lead_to_queue(self, service, db_session):
        lead = create_lead(db_session)
        service.claim(lead.id, "alice")

        released = service.unclaim(lead.id)

        assert released.status == LeadStatus.NEW
        assert released.claimed_by is None
        assert released.claimed_at is None

        assert service.claim(lead.id, "bob").claimed_by == "bob"

    def test_unclaim_keeps_saved_analysis(self, service, db_session):
        lead = create_lead(db_session)
        service.claim(lead.id, "alice")
        service.save_analysis(lead.id, [product_group()])

        released = service.unclaim(lead.id)

        assert released.status == LeadStatus.NEW
        assert released.analysis_result[0]["id"] == "item-1"

    def test_unclaim_new_lead(self, service, db_session):
        lead = create_lead(db_session)

        with pytest.raises(InvalidTransition):
            service.unclaim(lead.id)


class TestSkip:
    def test_skip_new_lead(self, service, db_session):
        lead = create_lead(db_session)

        skipped = service.skip(lead.id, reason="Not a repair request")

        assert skipped.status == LeadStatus.SKIPPED
        assert skipped.notes == "Not a repair request"

    def test_skip_claimed_lead(self, service, db_session):
        lead = create_lead(db_session)
        service.claim(lead.id, "alice")

        assert service.skip(lead.id).status == LeadStatus.SKIPPED

    def test_skip_is_idempotent(self, service, db_session):
        lead = create_lead(db_session)
        service.skip(lead.id, reason="spam")

        again = service.skip(lead.id, reason="other")

        assert again.status == LeadStatus.SKIPPED
        assert again.notes == "spam"

    def test_skip_completed_lead(self, service, db_session):
        lead = create_lead(db_session, status=LeadStatus.COMPLETED)

        with pytest.raises(InvalidTransition) as exc_info:
            service.skip(lead.id)

        assert exc_info.value.actual == LeadStatus.COMPLETED

    def test_skip_analyzed_lead(self, service, db_session):
        lead = create_lead(db_session, status=LeadStatus.ANALYZED, claimed_by="alice")

        with pytest.raises(InvalidTransition):
            service.skip(lead.id)


class TestSaveAnalysis:
    def test_save_analysis(self, service, db_session):
        lead = create_lead(db_session)
        service.claim(lead.id, "alice")

        saved = service.save_analysis(lead.id, [product_group("item-1"), product_group("item-2")])

        assert saved.status == LeadStatus.ANALYZED
        assert [g["id"] for g in saved.analysis_result] == ["item-1", "item-2"]
        assert len(saved.selected_services) == 4
        assert saved.selected_services[0]["service_name"] == "Heel repair"

    def test_save_again_overwrites(self, service, db_session):
        lead = create_lead(db_session)
        service.claim(lead.id, "alice")
        service.save_analysis(lead.id, [product_group("item-1"), product_group("item-2")])

        saved = service.save_analysis(lead.id, [product_group("item-3")])

        assert [g["id"] for g in saved.analysis_result] == ["item-3"]
        assert len(saved.selected_services) == 2

    def test_save_after_quote_keeps_quoted(self, service, db_session):
        lead = create_lead(db_session)
        service.claim(lead.id, "alice")
        service.mark_quoted(lead.id, draft_order_id="D1")

        saved = service.save_analysis(lead.id, [product_group()])

        assert saved.status == LeadStatus.QUOTED

    def test_quote_landing_just_before_save_is_kept(self, service, db_session):
        lead = create_lead(db_session)
        service.claim(lead.id, "alice")
        fired = []

        def quote_first(orm_execute_state):
            if orm_execute_state.is_update and not fired:
                fired.append(True)
                orm_execute_state.session.connection().execute(
                    text("UPDATE queue_leads SET status = 'quoted' WHERE id = :id"),
                    {"id": lead.id},
                )

        event.listen(db_session, "do_orm_execute", quote_first)
        try:
            saved = service.save_analysis(lead.id, [product_group()])
        finally:
            event.remove(db_session, "do_orm_execute", quote_first)

        assert fired == [True]
        assert saved.status == LeadStatus.QUOTED
        assert saved.analysis_result[0]["id"] == "item-1"

    def test_save_on_unclaimed_lead(self, service, db_session):
        lead = create_lead(db_session)

        with pytest.raises(InvalidTransition):
            service.save_analysis(lead.id, [product_group()])


class TestMarkQuoted:
    def test_mark_quoted(self, service, db_session):
        lead = create_lead(db_session)
        service.claim(lead.id, "alice")

        quoted = service.mark_quoted(
            lead.id,
            draft_order_id="gid://shopify/DraftOrder/7",
            draft_order_url="https://shop.test/draft/7",
            estimation_id="EST-7",
        )

        assert quoted.status == LeadStatus.QUOTED
        assert quoted.draft_order_id == "gid://shopify/DraftOrder/7"
        assert quoted.draft_order_url == "https://shop.test/draft/7"
        assert quoted.estimation_id == "EST-7"
        assert quoted.claimed_by == "alice"


class TestComplete:
    """Tests for closing out leads."""

    def test_complete_claimed_lead(self, service, db_session):
        lead = create_lead(db_session)
        service.claim(lead.id, "alice")
        training = [
            ProductTrainingData(
                image_urls=["https://cdn.test/img-1.jpg", "https://cdn.test/img-2.jpg"],
                services=[TrainingService(service_name="Heel repair", service_id="svc-heel")],
            )
        ]

        completed = service.complete(
            lead.id,
            draft_order_id="D1",
            estimation_id="EST-1",
            training_payload=training,
            completed_by="alice",
        )

        assert completed.status == LeadStatus.COMPLETED
        assert completed.completed_at is not None
        assert completed.completed_by == "alice"
        assert completed.completed_without_claim is False
        assert completed.draft_order_id == "D1"
        assert completed.training_payload[0]["services"][0]["service_name"] == "Heel repair"

        examples = db_session.query(TrainingExample).all()
        assert len(examples) == 2
        assert {e.lead_id for e in examples} == {lead.id}
        assert examples[0].verified_by == "alice"

    def test_complete_requires_claim(self, service, db_session):
        lead = create_lead(db_session)

        with pytest.raises(InvalidTransition):
            service.complete(lead.id)

    def test_complete_twice(self, service, db_session):
        lead = create_lead(db_session)
        service.claim(lead.id, "alice")
        service.complete(lead.id)

        with pytest.raises(InvalidTransition):
            service.complete(lead.id)

    def test_complete_without_claim(self, service, db_session):
        lead = create_lead(db_session)

        completed = service.complete_without_claim(lead.id, draft_order_id="D2")

        assert completed.status == LeadStatus.COMPLETED
        assert completed.completed_without_claim is True
        assert completed.claimed_by is None

    def test_complete_without_claim_rejects_skipped(self, service, db_session):
        lead = create_lead(db_session, status=LeadStatus.SKIPPED)

        with pytest.raises(InvalidTransition):
            service.complete_without_claim(lead.id)

    def test_complete_without_training_data_records_nothing(self, service, db_session):
        lead = create_lead(db_session)
        service.claim(lead.id, "alice")

        service.complete(lead.id)

        assert db_session.query(TrainingExample).count() == 0

    def test_sink_failure_does_not_undo_completion(self, db_session):
        class BrokenSink:
            def record(self, lead, products, verified_by=None):
                return 0

        service = LeadQueueService(db=db_session, training_sink=BrokenSink())
        lead = create_lead(db_session)
        service.claim(lead.id, "alice")

        completed = service.complete(
            lead.id,
            training_payload=[
                ProductTrainingData(
                    image_urls=["https://cdn.test/x.jpg"],
                    services=[TrainingService(service_name="Polish")],
                )
            ],
        )

        assert completed.status == LeadStatus.COMPLETED
