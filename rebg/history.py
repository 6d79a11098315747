from __future__ import annotations

import logging
from typing import List, Optional

from rebg.state import EditParameters

logger = logging.getLogger(__name__)


class EditHistory:
    """
    Bounded undo/redo stacks of immutable EditParameters snapshots.

    The top of the undo stack is the current state. The oldest remaining
    entry is the floor: undo never pops past it.
    """

    def __init__(self, floor: Optional[EditParameters] = None, limit: int = 20):
        if limit < 1:
            raise ValueError("history limit must be at least 1")
        self.limit = int(limit)
        self._undo_stack: List[EditParameters] = []
        self._redo_stack: List[EditParameters] = []
        self.reset(floor or EditParameters())

    def reset(self, floor: EditParameters) -> None:
        self._undo_stack = [floor]
        self._redo_stack = []

    @property
    def current(self) -> EditParameters:
        return self._undo_stack[-1]

    @property
    def can_undo(self) -> bool:
        return len(self._undo_stack) > 1

    @property
    def can_redo(self) -> bool:
        return bool(self._redo_stack)

    @property
    def undo_depth(self) -> int:
        return len(self._undo_stack)

    @property
    def redo_depth(self) -> int:
        return len(self._redo_stack)

    def __len__(self) -> int:
        return len(self._undo_stack)

    def commit(self, params: EditParameters) -> bool:
        """Push params unless equal to the current top. Returns True on push."""
        if params == self._undo_stack[-1]:
            return False
        self._undo_stack.append(params)
        self._redo_stack.clear()
        if len(self._undo_stack) > self.limit:
            evicted = len(self._undo_stack) - self.limit
            del self._undo_stack[:evicted]
            logger.debug("History full, evicted %d oldest snapshot(s)", evicted)
        return True

    def undo(self) -> Optional[EditParameters]:
        if not self.can_undo:
            return None
        self._redo_stack.append(self._undo_stack.pop())
        return self._undo_stack[-1]

    def redo(self) -> Optional[EditParameters]:
        if not self._redo_stack:
            return None
        nxt = self._redo_stack.pop()
        self._undo_stack.append(nxt)
        return nxt
