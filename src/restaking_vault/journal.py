"""
Undo journal.

Components write their state through an ``UndoJournal``. While a unit of
work is open every write records how to reverse itself, so ``rollback``
costs as much as the writes it undoes and nothing more. Outside a unit of
work writes go straight through and nothing is recorded.

Units of work nest: each ``begin`` pushes a mark, ``rollback`` undoes back to
the latest mark, and the entries are only dropped once the outermost unit
commits.
"""

from __future__ import annotations

from functools import partial
from typing import Any, Callable, MutableMapping

_MISSING = object()


def _restore_item(container: MutableMapping[Any, Any], key: Any, old: Any) -> None:
    if old is _MISSING:
        container.pop(key, None)
    else:
        container[key] = old


def _truncate(items: list[Any], length: int) -> None:
    del items[length:]


def _replace(items: list[Any], old: list[Any]) -> None:
    items[:] = old


class UndoJournal:
    """Write-through state journal with nested begin/commit/rollback."""

    def __init__(self) -> None:
        self._entries: list[Callable[[], None]] = []
        self._marks: list[int] = []
        self.writes_recorded = 0

    @property
    def active(self) -> bool:
        return bool(self._marks)

    def __len__(self) -> int:
        return len(self._entries)

    # ==================== Units of work ====================

    def begin(self) -> None:
        self._marks.append(len(self._entries))

    def commit(self) -> None:
        if not self._marks:
            raise RuntimeError("commit() without begin()")
        self._marks.pop()
        if not self._marks:
            self._entries.clear()

    def rollback(self) -> None:
        """Undo every write since the latest ``begin``, newest first."""
        if not self._marks:
            raise RuntimeError("rollback() without begin()")
        mark = self._marks.pop()
        while len(self._entries) > mark:
            self._entries.pop()()

    def record(self, undo: Callable[[], None]) -> None:
        if self._marks:
            self._entries.append(undo)
            self.writes_recorded += 1

    # ==================== Journaled writes ====================

    def set_item(self, container: MutableMapping[Any, Any], key: Any, value: Any) -> None:
        if self._marks:
            self.record(partial(_restore_item, container, key, container.get(key, _MISSING)))
        container[key] = value

    def delete_item(self, container: MutableMapping[Any, Any], key: Any) -> None:
        if self._marks:
            self.record(partial(_restore_item, container, key, container[key]))
        del container[key]

    def set_attr(self, obj: Any, name: str, value: Any) -> None:
        if self._marks:
            self.record(partial(setattr, obj, name, getattr(obj, name)))
        setattr(obj, name, value)

    def append(self, items: list[Any], item: Any) -> None:
        if self._marks:
            self.record(partial(_truncate, items, len(items)))
        items.append(item)

    def replace_list(self, items: list[Any], new_items: list[Any]) -> None:
        """Replace the contents of ``items`` in place (the list object is kept)."""
        if self._marks:
            self.record(partial(_replace, items, list(items)))
        items[:] = new_items
