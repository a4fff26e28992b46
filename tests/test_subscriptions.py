"""Tests for payment_reminder.subscriptions -- full-snapshot change feeds."""

import logging

from payment_reminder.subscriptions import ChangeFeed


class FakeSource:
    def __init__(self):
        self.rows: dict[str, list[str]] = {}
        self.reads = 0

    def snapshot(self, owner_id):
        self.reads += 1
        return list(self.rows.get(owner_id, []))


class TestChangeFeed:
    def test_snapshot_delivered_on_subscribe(self):
        source = FakeSource()
        source.rows["u1"] = ["a"]
        feed = ChangeFeed("things", source.snapshot)
        received = []
        sub = feed.subscribe("u1", received.append)
        assert received == [["a"]]
        assert sub.deliveries == 1

    def test_publish_pushes_full_snapshot(self):
        source = FakeSource()
        feed = ChangeFeed("things", source.snapshot)
        received = []
        feed.subscribe("u1", received.append)
        source.rows["u1"] = ["a", "b"]
        feed.publish("u1")
        assert received == [[], ["a", "b"]]

    def test_publish_only_reaches_same_owner(self):
        source = FakeSource()
        feed = ChangeFeed("things", source.snapshot)
        mine, theirs = [], []
        feed.subscribe("u1", mine.append)
        feed.subscribe("u2", theirs.append)
        feed.publish("u1")
        assert len(mine) == 2
        assert len(theirs) == 1

    def test_publish_without_subscribers_skips_query(self):
        source = FakeSource()
        feed = ChangeFeed("things", source.snapshot)
        feed.publish("u1")
        assert source.reads == 0

    def test_close_stops_delivery(self):
        source = FakeSource()
        feed = ChangeFeed("things", source.snapshot)
        received = []
        sub = feed.subscribe("u1", received.append)
        sub.close()
        sub.close()
        feed.publish("u1")
        assert len(received) == 1
        assert not sub.active
        assert feed.subscriber_count() == 0

    def test_context_manager_closes(self):
        feed = ChangeFeed("things", FakeSource().snapshot)
        with feed.subscribe("u1", lambda rows: None) as sub:
            assert feed.subscriber_count("u1") == 1
        assert not sub.active
        assert feed.subscriber_count("u1") == 0

    def test_resubscribe_gets_fresh_snapshot(self):
        source = FakeSource()
        feed = ChangeFeed("things", source.snapshot)
        feed.subscribe("u1", lambda rows: None).close()
        source.rows["u1"] = ["x"]
        received = []
        feed.subscribe("u1", received.append)
        assert received == [["x"]]

    def test_failing_callback_is_logged_not_raised(self, caplog):
        feed = ChangeFeed("things", FakeSource().snapshot)
        healthy = []

        def broken(rows):
            raise RuntimeError("subscriber bug")

        with caplog.at_level(logging.ERROR, logger="payment_reminder.subscriptions"):
            bad = feed.subscribe("u1", broken)
            feed.subscribe("u1", healthy.append)
            feed.publish("u1")

        assert bad.deliveries == 0
        assert len(healthy) == 2
        assert "subscriber for owner u1 raised" in caplog.text

    def test_subscribers_get_independent_lists(self):
        source = FakeSource()
        source.rows["u1"] = ["a"]
        feed = ChangeFeed("things", source.snapshot)
        first, second = [], []
        feed.subscribe("u1", first.append)
        feed.subscribe("u1", second.append)
        feed.publish("u1")
        first[-1].append("mutated")
        assert second[-1] == ["a"]
