"""Tests for per-viewer visibility filtering."""

from conftest import make_record

from src.room.models import HOST_ID, Visibility
from src.room.projector import is_visible, project_view


class TestIsVisible:
    """Test the visibility predicate."""

    def test_public(self):
        record = make_record("p1")
        assert is_visible(record, "p2")
        assert is_visible(record, None)

    def test_private(self):
        record = make_record("p1", visibility=Visibility.PRIVATE)
        assert is_visible(record, "p1")
        assert not is_visible(record, "p2")
        assert not is_visible(record, None)

    def test_targeted(self):
        record = make_record("p1", visibility=Visibility.TARGETED, targets=["p2"])
        assert is_visible(record, "p1")
        assert is_visible(record, "p2")
        assert not is_visible(record, "p3")

    def test_targets_ignored_for_private(self):
        record = make_record("p1", visibility=Visibility.PRIVATE, targets=["p2"])
        assert not is_visible(record, "p2")

    def test_targeted_without_targets(self):
        record = make_record("p1", visibility=Visibility.TARGETED)
        assert is_visible(record, "p1")
        assert not is_visible(record, "p2")


class TestProjectView:
    """Test building filtered room copies."""

    def _populate(self, store):
        store.add_participant("p1", "Alice")
        store.add_participant("p2", "Bob")
        store.add_participant("p3", "Carol")
        store.append_roll("p1", make_record("p1", "Alice", visibility=Visibility.PRIVATE, timestamp=1))
        store.append_roll(
            "p2", make_record("p2", "Bob", visibility=Visibility.TARGETED, targets=["p3"], timestamp=2)
        )
        store.append_roll("p3", make_record("p3", "Carol", timestamp=3))
        store.append_host_roll(make_record(HOST_ID, "DM", visibility=Visibility.PRIVATE, timestamp=4), False)

    def test_roller_view(self, store):
        self._populate(store)
        view = project_view(store.room, "p1")
        assert view.participants["p1"].table is not None
        assert view.participants["p2"].table is None
        assert view.participants["p3"].table is not None
        assert view.host_table is None
        assert [r.timestamp for r in view.history] == [1, 3]

    def test_target_view(self, store):
        self._populate(store)
        view = project_view(store.room, "p3")
        assert view.participants["p1"].table is None
        assert view.participants["p2"].table is not None
        assert [r.timestamp for r in view.history] == [2, 3]

    def test_host_view_unfiltered(self, store):
        self._populate(store)
        view = project_view(store.room, HOST_ID)
        assert all(p.table is not None for p in view.participants.values())
        assert view.host_table is not None
        assert len(view.history) == 4

    def test_room_untouched(self, store):
        self._populate(store)
        view = project_view(store.room, "p1")
        view.participants["p1"].nickname = "Changed"
        assert store.get("p2").table is not None
        assert store.get("p1").nickname == "Alice"
        assert len(store.room.history) == 4

    def test_participants_kept(self, store):
        """Filtering hides rolls, never people."""
        self._populate(store)
        view = project_view(store.room, "p1")
        assert list(view.participants) == ["p1", "p2", "p3"]
        assert view.host_nick == "DM"
