"""The pinned working set and the current selection."""

from collections.abc import Callable, Iterable

PIN_LIMIT = 8


def unique_keep_order(items: Iterable[str]) -> list[str]:
    seen = set()
    out = []
    for item in items:
        if not item or item in seen:
            continue
        seen.add(item)
        out.append(item)
    return out


class WorkingSet:
    """Most-recently-pinned-first list of project ids plus one selected id.

    Selecting a project pins it; pinning never selects. Visibility depends
    on the active mode, so operations that may reassign the selection take
    an `is_visible` predicate from the caller.
    """

    def __init__(
        self,
        pinned: Iterable[str] = (),
        selected: str | None = None,
        capacity: int = PIN_LIMIT,
    ):
        self.capacity = capacity
        self._pinned = unique_keep_order(pinned)[:capacity]
        self.selected = selected

    @classmethod
    def load(
        cls,
        pinned: Iterable[str],
        selected: str | None,
        known_ids: Iterable[str],
        capacity: int = PIN_LIMIT,
    ) -> "WorkingSet":
        """Build from persisted values, enforcing the working-set invariants."""
        known = set(known_ids)
        ws = cls([pid for pid in unique_keep_order(pinned) if pid in known], None, capacity)
        ws.selected = selected if selected in known else None
        return ws

    @property
    def pinned(self) -> list[str]:
        return list(self._pinned)

    def is_pinned(self, project_id: str) -> bool:
        return project_id in self._pinned

    def pin(self, project_id: str) -> None:
        if project_id in self._pinned:
            return
        self._pinned = [project_id, *self._pinned][: self.capacity]

    def unpin(self, project_id: str, is_visible: Callable[[str], bool]) -> None:
        if project_id not in self._pinned:
            return
        self._pinned.remove(project_id)
        if self.selected == project_id:
            self.selected = self._first_visible(is_visible)

    def select(self, project_id: str) -> None:
        self.selected = project_id
        self.pin(project_id)

    def revalidate(self, is_visible: Callable[[str], bool]) -> None:
        """Re-check the selection after a mode switch. Pins are left alone."""
        if self.selected is not None and not is_visible(self.selected):
            self.selected = self._first_visible(is_visible)

    def fill(self, project_ids: Iterable[str]) -> list[str]:
        """Append ids at the tail while capacity remains. Returns the ids added."""
        added = []
        for project_id in project_ids:
            if len(self._pinned) >= self.capacity:
                break
            if project_id in self._pinned:
                continue
            self._pinned.append(project_id)
            added.append(project_id)
        return added

    def normalize(self, known_ids: Iterable[str]) -> None:
        """Drop unknown ids, collapse duplicates and truncate to capacity."""
        known = set(known_ids)
        self._pinned = [
            pid for pid in unique_keep_order(self._pinned) if pid in known
        ][: self.capacity]
        if self.selected is not None and self.selected not in known:
            self.selected = None

    def forget(self, project_id: str, is_visible: Callable[[str], bool]) -> None:
        """Remove every reference to a project that no longer exists."""
        self.unpin(project_id, is_visible)
        if self.selected == project_id:
            self.selected = self._first_visible(is_visible)

    def _first_visible(self, is_visible: Callable[[str], bool]) -> str | None:
        return next((pid for pid in self._pinned if is_visible(pid)), None)
