"""Unit tests for image grouping."""

from datetime import timedelta

import pytest

from quotedesk_core.domain.services.image_grouping import (
    customer_images_since,
    group_images,
    group_images_before,
    images_before,
)
from quotedesk_core.providers.base import MessageDirection

from tests.factories import at, make_image, make_text


class TestGroupImages:
    """Tests for splitting images into bursts."""

    def test_empty(self):
        assert group_images([]) == []

    def test_gap_splits_groups(self):
        m0 = make_image("m0", at(0))
        m1 = make_image("m1", at(10))
        m2 = make_image("m2", at(40))

        groups = group_images([m0, m1, m2], gap=timedelta(minutes=15))

        assert [g.message_ids for g in groups] == [("m0", "m1"), ("m2",)]

    def test_wide_gap_keeps_one_group(self):
        messages = [make_image("m0", at(0)), make_image("m1", at(10)), make_image("m2", at(40))]

        groups = group_images(messages, gap=timedelta(minutes=60))

        assert len(groups) == 1
        assert len(groups[0]) == 3

    def test_gap_equal_to_threshold_stays_together(self):
        messages = [make_image("m0", at(0)), make_image("m1", at(15))]

        groups = group_images(messages, gap=timedelta(minutes=15))

        assert len(groups) == 1

    def test_gap_is_measured_from_previous_image(self):
        """A slow steady burst stays together even if it spans more than the gap."""
        messages = [make_image(f"m{i}", at(i * 10)) for i in range(6)]

        groups = group_images(messages, gap=timedelta(minutes=15))

        assert len(groups) == 1
        assert groups[0].last_at - groups[0].first_at == timedelta(minutes=50)

    def test_input_order_does_not_matter(self):
        m0 = make_image("m0", at(0))
        m1 = make_image("m1", at(10))
        m2 = make_image("m2", at(40))

        groups = group_images([m2, m0, m1], gap=timedelta(minutes=15))

        assert [g.message_ids for g in groups] == [("m0", "m1"), ("m2",)]
        assert groups[0].first_at == at(0)
        assert groups[0].last_at == at(10)

    def test_single_image_is_one_group(self):
        only = make_image("m0", at(0))

        groups = group_images([only])

        assert len(groups) == 1
        assert groups[0].messages == (only,)
        assert groups[0].first_at == groups[0].last_at == at(0)

    def test_identical_timestamps_stay_together(self):
        messages = [make_image("b", at(0)), make_image("a", at(0)), make_image("c", at(0))]

        groups = group_images(messages, gap=timedelta(0))

        assert [g.message_ids for g in groups] == [("a", "b", "c")]

    def test_media_urls(self):
        groups = group_images([make_image("a", at(0)), make_image("b", at(1))])
        assert groups[0].media_urls == ("https://cdn.test/a.jpg", "https://cdn.test/b.jpg")


class TestImagesBefore:
    """Tests for the lookback window before an order."""

    def test_keeps_only_customer_images_in_window(self):
        anchor = at(0)
        messages = [
            make_image("too-old", anchor - timedelta(days=8)),
            make_image("in-window", anchor - timedelta(days=2)),
            make_image("from-store", anchor - timedelta(days=1), direction=MessageDirection.FROM_STORE),
            make_text("text", anchor - timedelta(hours=1)),
            make_image("no-url", anchor - timedelta(hours=2), media_url=""),
            make_image("at-anchor", anchor),
            make_image("after", anchor + timedelta(minutes=5)),
        ]

        result = images_before(messages, anchor, lookback=timedelta(days=7))

        assert [m.id for m in result] == ["in-window"]

    def test_window_start_is_inclusive(self):
        anchor = at(0)
        edge = make_image("edge", anchor - timedelta(days=7))

        assert images_before([edge], anchor, lookback=timedelta(days=7)) == [edge]

    def test_group_images_before(self):
        anchor = at(0)
        messages = [
            make_image("a", anchor - timedelta(hours=30)),
            make_image("b", anchor - timedelta(hours=3)),
            make_image("c", anchor - timedelta(hours=2, minutes=30)),
        ]

        groups = group_images_before(messages, anchor, gap=timedelta(minutes=120))

        assert [g.message_ids for g in groups] == [("a",), ("b", "c")]


class TestCustomerImagesSince:
    def test_since_is_inclusive(self):
        since = at(0)
        messages = [
            make_image("before", at(-1)),
            make_image("edge", at(0)),
            make_image("after", at(5)),
            make_image("store", at(6), direction=MessageDirection.FROM_STORE),
        ]

        result = customer_images_since(messages, since)

        assert [m.id for m in result] == ["edge", "after"]


def _assert_partition(messages, groups):
    seen = [m.id for g in groups for m in g.messages]
    assert len(seen) == len(set(seen))
    assert set(seen) == {m.id for m in messages}
    times = [m.sent_at for g in groups for m in g.messages]
    assert times == sorted(times)
    for earlier, later in zip(groups, groups[1:]):
        assert earlier.last_at <= later.first_at


class TestPartition:
    """Groups split the input: disjoint, complete and chronological."""

    @pytest.mark.parametrize(
        "offsets",
        [
            [0],
            [0, 0, 0],
            [0, 5, 10, 200, 205, 600],
            [600, 0, 205, 10, 200, 5],
            [0, 121, 242, 363],
            [30, 30, 31, 500, 500],
        ],
    )
    @pytest.mark.parametrize("gap_minutes", [0, 15, 120])
    def test_groups_partition_input(self, offsets, gap_minutes):
        messages = [make_image(f"m{i}", at(offset)) for i, offset in enumerate(offsets)]
        gap = timedelta(minutes=gap_minutes)

        groups = group_images(messages, gap=gap)

        _assert_partition(messages, groups)
        for group in groups:
            times = [m.sent_at for m in group.messages]
            assert all(b - a <= gap for a, b in zip(times, times[1:]))
        for earlier, later in zip(groups, groups[1:]):
            assert later.first_at - earlier.last_at > gap
