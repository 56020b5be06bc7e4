"""Tests for revision tracking and sync status."""

import logging
import pytest

from cardsync.storage import LocalStore
from cardsync.sync import RevisionState, RevisionTracker
from cardsync.sync.revision import coerce_revision


@pytest.fixture
def store():
    store = LocalStore(":memory:")
    store.connect()
    yield store
    store.close()


@pytest.fixture
def tracker(store):
    return RevisionTracker(store, base_key="cards")


class TestRevisionState:
    """Tests for the RevisionState dataclass."""

    def test_defaults(self):
        state = RevisionState()

        assert state.revision_local == 0
        assert state.revision_server == 0
        assert state.has_unsaved_changes is False
        assert state.is_syncing is False
        assert state.last_sync_error is None

    def test_unsaved_derived_from_revisions(self):
        """Test that unsaved changes follow local > server."""
        assert RevisionState(revision_local=2, revision_server=1).has_unsaved_changes
        assert not RevisionState(revision_local=1, revision_server=1).has_unsaved_changes
        assert not RevisionState(revision_local=1, revision_server=3).has_unsaved_changes

    def test_to_dict(self):
        d = RevisionState(revision_local=3, revision_server=1).to_dict()

        assert d["revision_local"] == 3
        assert d["has_unsaved_changes"] is True
        assert d["last_saved"] is None


class TestCoerceRevision:
    """Tests for revision input validation."""

    @pytest.mark.parametrize(
        "value,expected",
        [(5, 5), (0, 0), ("7", 7), (" 12 ", 12), (-3, 0), ("abc", 0),
         (None, 0), (True, 0), (2.5, 0), ("-4", 0), ("²", 0)],
    )
    def test_coerce(self, value, expected):
        assert coerce_revision(value) == expected


class TestRevisionCounters:
    """Tests for counter updates and persistence."""

    def test_starts_at_zero(self, tracker):
        assert tracker.revision_local == 0
        assert tracker.revision_server == 0
        assert tracker.needs_cloud_write() is False
        assert tracker.needs_cloud_read() is True

    def test_loads_persisted_counters(self, store):
        """Test that counters are restored from the store."""
        store.set("cards_revision", "4")
        store.set("cards_server_revision", "2")

        tracker = RevisionTracker(store, base_key="cards")

        assert tracker.revision_local == 4
        assert tracker.revision_server == 2
        assert tracker.get_state().has_unsaved_changes is True

    def test_invalid_persisted_counter_becomes_zero(self, store):
        store.set("cards_revision", "garbage")

        tracker = RevisionTracker(store, base_key="cards")

        assert tracker.revision_local == 0

    def test_increment_sequence(self, tracker):
        """Test that each increment adds exactly one."""
        seen = [tracker.increment_local_revision() for _ in range(5)]

        assert seen == [1, 2, 3, 4, 5]
        assert tracker.get_state().has_unsaved_changes is True
        assert tracker.get_state().last_modified is not None

    def test_increment_persists(self, tracker, store):
        tracker.increment_local_revision()
        tracker.increment_local_revision()

        assert store.get("cards_revision") == "2"

    def test_set_invalid_revision_coerced(self, tracker, store):
        tracker.set_local_revision(-8)
        tracker.set_server_revision("nope")

        assert tracker.revision_local == 0
        assert tracker.revision_server == 0
        assert store.get("cards_server_revision") == "0"

    def test_needs_cloud_read_when_behind(self, tracker):
        """Test local=3, server=5."""
        tracker.set_local_revision(3)
        tracker.set_server_revision(5)

        assert tracker.needs_cloud_write() is False
        assert tracker.needs_cloud_read() is True

    def test_mark_data_updated_from_server(self, tracker, store):
        """Test that both counters adopt the server revision."""
        tracker.set_local_revision(9)
        tracker.set_server_revision(3)

        tracker.mark_data_updated_from_server(6)

        state = tracker.get_state()
        assert state.revision_local == 6
        assert state.revision_server == 6
        assert state.has_unsaved_changes is False
        assert store.get("cards_revision") == "6"

    def test_get_state_returns_copy(self, tracker):
        state = tracker.get_state()
        state.revision_local = 99

        assert tracker.revision_local == 0


class TestSyncStatus:
    """Tests for the per-attempt state machine."""

    def test_syncing_then_synced(self, tracker):
        tracker.increment_local_revision()

        tracker.mark_as_syncing()
        assert tracker.get_state().is_syncing is True
        assert tracker.get_state().last_sync_attempt is not None

        tracker.mark_as_synced(1)
        state = tracker.get_state()
        assert state.is_syncing is False
        assert state.has_unsaved_changes is False
        assert state.revision_server == 1
        assert state.last_saved is not None

    def test_failed_keeps_unsaved_changes(self, tracker):
        """Test that a failed attempt never clears unsaved changes."""
        tracker.increment_local_revision()
        tracker.mark_as_syncing()

        tracker.mark_sync_failed("timeout")

        state = tracker.get_state()
        assert state.is_syncing is False
        assert state.has_unsaved_changes is True
        assert state.last_sync_error == "timeout"

    def test_synced_clears_previous_error(self, tracker):
        tracker.mark_sync_failed("boom")
        tracker.mark_as_synced()

        assert tracker.get_state().last_sync_error is None

    def test_synced_before_newer_edit_keeps_unsaved(self, tracker):
        """Test confirming an older revision while a newer edit exists."""
        tracker.increment_local_revision()
        tracker.increment_local_revision()

        tracker.mark_as_synced(1)

        assert tracker.get_state().has_unsaved_changes is True

    def test_reset(self, tracker, store):
        """Test that reset zeroes counters and removes persisted copies."""
        tracker.increment_local_revision()
        tracker.set_server_revision(1)
        tracker.mark_sync_failed("x")

        tracker.reset()

        state = tracker.get_state()
        assert state.revision_local == 0
        assert state.revision_server == 0
        assert state.last_sync_error is None
        assert store.get("cards_revision") is None
        assert store.get("cards_server_revision") is None


class TestSubscribers:
    """Tests for change notifications."""

    def test_subscribe_called_immediately(self, tracker):
        states = []

        tracker.subscribe(states.append)

        assert len(states) == 1
        assert states[0].revision_local == 0

    def test_notified_on_every_change(self, tracker):
        states = []
        tracker.subscribe(states.append)

        tracker.increment_local_revision()
        tracker.mark_as_syncing()
        tracker.mark_as_synced(1)

        assert [s.revision_local for s in states] == [0, 1, 1, 1]
        assert [s.is_syncing for s in states] == [False, False, True, False]

    def test_unsubscribe(self, tracker):
        states = []
        unsubscribe = tracker.subscribe(states.append)

        unsubscribe()
        tracker.increment_local_revision()

        assert len(states) == 1
        unsubscribe()  # Second call is harmless

    def test_failing_subscriber_isolated(self, tracker, caplog):
        """Test that one failing subscriber does not block others."""
        def broken(state):
            raise RuntimeError("listener bug")

        states = []
        tracker.subscribe(broken)
        tracker.subscribe(states.append)

        with caplog.at_level(logging.ERROR):
            tracker.increment_local_revision()

        assert len(states) == 2
        assert "Error in sync status subscriber" in caplog.text

    def test_subscribers_receive_snapshots(self, tracker):
        states = []
        tracker.subscribe(states.append)

        tracker.increment_local_revision()

        assert states[0].revision_local == 0
        assert states[1].revision_local == 1


class TestPersistedCorruption:
    def test_non_ascii_digit_counter(self, store):
        """Test that a superscript digit in a counter does not crash loading."""
        store.set("cards_revision", "²")

        tracker = RevisionTracker(store, base_key="cards")

        assert tracker.revision_local == 0
