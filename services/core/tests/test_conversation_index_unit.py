"""Unit tests for the phone-keyed conversation index."""

import asyncio

import pytest

from quotedesk_core.domain.services.conversation_index import ConversationIndex
from quotedesk_core.domain.services.phone import PhoneNormalizer
from quotedesk_core.providers.base import ProviderNotConfigured, UpstreamFailure

from tests.factories import FakeConversationSource, make_conversation


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def source() -> FakeConversationSource:
    return FakeConversationSource(
        [
            make_conversation("c1", "John Smith", "+971501234567"),
            make_conversation("c2", "Sarah", "971509876543"),
            make_conversation("c3", "Visitor", "+44 7700 900123"),
        ],
        page_size=2,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def index(source, clock) -> ConversationIndex:
    return ConversationIndex(source=source, ttl_seconds=60, clock=clock)


class TestBuild:
    """Tests for loading the index from the source."""

    @pytest.mark.asyncio
    async def test_loads_every_page(self, index, source):
        snapshot = await index.build()

        assert source.page_calls == [1, 2]
        assert snapshot.size == 3
        assert snapshot.complete is True
        assert snapshot.error is None
        assert index.size == 3

    @pytest.mark.asyncio
    async def test_lookup_in_any_format(self, index):
        await index.build()

        for phone in ["+971501234567", "971501234567", "0501234567", "050 123 4567"]:
            assert index.lookup(phone).id == "c1"
        assert index.lookup("+447700900123").id == "c3"
        assert index.lookup("0500000000") is None
        assert index.lookup("") is None

    @pytest.mark.asyncio
    async def test_first_conversation_wins_on_shared_phone(self, clock):
        source = FakeConversationSource(
            [
                make_conversation("older", "John", "+971501234567"),
                make_conversation("newer", "John S", "0501234567"),
            ]
        )
        index = ConversationIndex(source=source, clock=clock)

        snapshot = await index.build()

        assert snapshot.size == 1
        assert index.lookup("501234567").id == "older"
        assert [c.id for c in index.conversations()] == ["older"]

    @pytest.mark.asyncio
    async def test_conversations_without_phone_are_ignored(self, clock):
        source = FakeConversationSource([make_conversation("c1", "Anon", "")])
        index = ConversationIndex(source=source, clock=clock)

        snapshot = await index.build()

        assert snapshot.size == 0
        assert index.conversations() == []

    @pytest.mark.asyncio
    async def test_uses_injected_normalizer(self, clock):
        source = FakeConversationSource([make_conversation("uk", "Ann", "+447700900123")])
        index = ConversationIndex(
            source=source, normalizer=PhoneNormalizer(country_code="44"), clock=clock
        )

        await index.build()

        assert index.lookup("07700 900123").id == "uk"

    @pytest.mark.asyncio
    async def test_no_source(self):
        index = ConversationIndex()

        with pytest.raises(ProviderNotConfigured):
            await index.build()


class TestCaching:
    """Tests for TTL reuse and refresh."""

    @pytest.mark.asyncio
    async def test_fresh_snapshot_is_reused(self, index, source, clock):
        first = await index.build()
        clock.now += 30

        second = await index.build()

        assert second is first
        assert source.page_calls == [1, 2]

    @pytest.mark.asyncio
    async def test_expired_snapshot_is_rebuilt(self, index, source, clock):
        await index.build()
        clock.now += 61

        await index.build()

        assert source.page_calls == [1, 2, 1, 2]

    @pytest.mark.asyncio
    async def test_force_refresh(self, index, source):
        await index.build()
        source.add(make_conversation("c4", "New Customer", "0551112222"))

        snapshot = await index.build(force_refresh=True)

        assert snapshot.size == 4
        assert index.lookup("0551112222").id == "c4"

    @pytest.mark.asyncio
    async def test_invalidate(self, index, source):
        await index.build()
        index.invalidate()

        assert index.lookup("0501234567") is None
        assert index.is_fresh() is False

        await index.build()
        assert source.page_calls == [1, 2, 1, 2]

    @pytest.mark.asyncio
    async def test_concurrent_builds_share_one_load(self, index, source):
        first, second = await asyncio.gather(
            index.build(force_refresh=True),
            index.build(force_refresh=True),
        )

        assert source.page_calls == [1, 2]
        assert first is second


class TestPartialFailure:
    """Tests for a page failing mid-build."""

    @pytest.mark.asyncio
    async def test_keeps_pages_loaded_before_failure(self, index, source):
        source.fail_on_page = 2

        with pytest.raises(UpstreamFailure):
            await index.build()

        snapshot = index.snapshot
        assert snapshot.complete is False
        assert "page 2" in snapshot.error
        assert snapshot.size == 2
        assert index.lookup("0501234567").id == "c1"
        assert index.lookup("+447700900123") is None

    @pytest.mark.asyncio
    async def test_partial_snapshot_is_not_fresh(self, index, source):
        source.fail_on_page = 2
        with pytest.raises(UpstreamFailure):
            await index.build()

        source.fail_on_page = None
        snapshot = await index.build()

        assert snapshot.complete is True
        assert snapshot.size == 3


class TestSeed:
    def test_seed_installs_conversations(self, clock):
        index = ConversationIndex(clock=clock)

        snapshot = index.seed(
            [
                make_conversation("c1", "John", "+971501234567"),
                make_conversation("c2", "Sarah", "0509876543"),
            ]
        )

        assert snapshot.size == 2
        assert index.is_fresh() is True
        assert index.lookup("971509876543").id == "c2"
        assert {c.id for c in index.conversations()} == {"c1", "c2"}

    @pytest.mark.asyncio
    async def test_build_returns_seeded_snapshot_without_source(self, clock):
        index = ConversationIndex(clock=clock)
        seeded = index.seed([make_conversation("c1", "John", "0501234567")])

        snapshot = await index.build()

        assert snapshot is seeded
        assert index.lookup("+971501234567").id == "c1"

    @pytest.mark.asyncio
    async def test_seeded_snapshot_outlives_ttl_without_source(self, clock):
        index = ConversationIndex(ttl_seconds=60, clock=clock)
        seeded = index.seed([make_conversation("c1", "John", "0501234567")])
        clock.now += 3600

        assert index.is_fresh() is False
        assert await index.build() is seeded

    @pytest.mark.asyncio
    async def test_force_refresh_of_seeded_index_needs_source(self, clock):
        index = ConversationIndex(clock=clock)
        index.seed([make_conversation("c1", "John", "0501234567")])

        with pytest.raises(ProviderNotConfigured):
            await index.build(force_refresh=True)

        assert index.lookup("0501234567").id == "c1"
