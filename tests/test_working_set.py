"""Tests for the pinned working set."""

from gitshlc.core.working_set import PIN_LIMIT, WorkingSet, unique_keep_order


def _visible(*ids):
    allowed = set(ids)
    return lambda pid: pid in allowed


class TestPin:
    def test_pin_prepends(self):
        ws = WorkingSet()
        ws.pin("a")
        ws.pin("b")
        assert ws.pinned == ["b", "a"]

    def test_pin_is_idempotent(self):
        ws = WorkingSet(["b", "a"])
        ws.pin("a")
        assert ws.pinned == ["b", "a"]

    def test_nine_pins_evict_oldest(self):
        ws = WorkingSet()
        ids = [f"p{i}" for i in range(9)]
        for pid in ids:
            ws.pin(pid)
        assert len(ws.pinned) == PIN_LIMIT == 8
        assert ws.pinned == list(reversed(ids[1:]))
        assert "p0" not in ws.pinned

    def test_pin_does_not_select(self):
        ws = WorkingSet()
        ws.pin("a")
        assert ws.selected is None

    def test_never_exceeds_capacity_or_duplicates(self):
        ws = WorkingSet()
        for pid in ["a", "b", "a", "c", "d", "e", "f", "g", "h", "i", "b", "j"]:
            ws.pin(pid)
            assert len(ws.pinned) <= PIN_LIMIT
            assert len(set(ws.pinned)) == len(ws.pinned)


class TestSelect:
    def test_select_pins(self):
        ws = WorkingSet()
        ws.select("a")
        assert ws.selected == "a"
        assert ws.pinned == ["a"]

    def test_select_already_pinned_keeps_order(self):
        ws = WorkingSet(["a", "b"])
        ws.select("b")
        assert ws.pinned == ["a", "b"]


class TestUnpin:
    def test_unpin_selected_reassigns_to_first_visible(self):
        ws = WorkingSet(["a", "b", "c"], selected="a")
        ws.unpin("a", _visible("c"))
        assert ws.pinned == ["b", "c"]
        assert ws.selected == "c"

    def test_unpin_selected_without_visible_pins_clears(self):
        ws = WorkingSet(["a", "b"], selected="a")
        ws.unpin("a", _visible())
        assert ws.selected is None

    def test_unpin_other_keeps_selection(self):
        ws = WorkingSet(["a", "b"], selected="a")
        ws.unpin("b", _visible("a", "b"))
        assert ws.selected == "a"

    def test_unpin_unknown_is_noop(self):
        ws = WorkingSet(["a"], selected="a")
        ws.unpin("zzz", _visible("a"))
        assert ws.pinned == ["a"]
        assert ws.selected == "a"


class TestRevalidate:
    def test_hidden_selection_moves_and_pins_stay(self):
        ws = WorkingSet(["a", "b"], selected="a")
        ws.revalidate(_visible("b"))
        assert ws.selected == "b"
        assert ws.pinned == ["a", "b"]

    def test_visible_selection_kept(self):
        ws = WorkingSet(["a", "b"], selected="b")
        ws.revalidate(_visible("a", "b"))
        assert ws.selected == "b"


class TestFillAndLoad:
    def test_fill_appends_until_capacity(self):
        ws = WorkingSet([f"p{i}" for i in range(6)])
        added = ws.fill(["x", "p1", "y", "z"])
        assert added == ["x", "y"]
        assert ws.pinned[-2:] == ["x", "y"]
        assert len(ws.pinned) == PIN_LIMIT

    def test_load_filters_unknown_before_truncating(self):
        pinned = ["ghost"] + [f"p{i}" for i in range(8)]
        ws = WorkingSet.load(pinned, "ghost", known_ids=[f"p{i}" for i in range(8)])
        assert ws.pinned == [f"p{i}" for i in range(8)]
        assert ws.selected is None

    def test_normalize_drops_unknown(self):
        ws = WorkingSet(["a", "b"], selected="b")
        ws.normalize(["a"])
        assert ws.pinned == ["a"]
        assert ws.selected is None

    def test_forget(self):
        ws = WorkingSet(["a", "b"], selected="a")
        ws.forget("a", _visible("b"))
        assert ws.pinned == ["b"]
        assert ws.selected == "b"

    def test_unique_keep_order(self):
        assert unique_keep_order(["b", "a", "b", "", "c"]) == ["b", "a", "c"]
