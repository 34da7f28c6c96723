"""Bounded, append-only history store for one session."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass

from praxis.schemas import ObservationKind, Turn, TurnRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingTurn:
    """A turn staged for a group commit."""

    role: TurnRole
    content: str
    ref: str | None = None
    kind: ObservationKind | None = None


class HistoryStore:
    """FIFO-bounded sequence of turns.

    Ordinals keep increasing after eviction, so ``Turn.index`` always reflects
    submission order across the whole session.
    """

    def __init__(self, max_history: int):
        if max_history <= 0:
            raise ValueError("max_history must be > 0")
        self.max_history = max_history
        self._turns: deque[Turn] = deque(maxlen=max_history)
        self._next_index = 0
        self._evicted = 0

    def append(
        self,
        role: TurnRole,
        content: str,
        ref: str | None = None,
        kind: ObservationKind | None = None,
    ) -> Turn:
        """Append one turn, evicting the oldest when over the bound."""
        return self.extend([PendingTurn(role, content, ref, kind)])[0]

    def extend(self, pending: list[PendingTurn]) -> list[Turn]:
        """Commit a group of turns in the given order."""
        turns = [
            Turn(
                role=p.role,
                content=p.content,
                index=self._next_index + offset,
                ref=p.ref,
                kind=p.kind,
            )
            for offset, p in enumerate(pending)
        ]
        for turn in turns:
            if len(self._turns) == self.max_history:
                self._evicted += 1
            self._turns.append(turn)
        self._next_index += len(turns)

        if self._evicted and turns:
            logger.debug(f"History at bound {self.max_history}, {self._evicted} turns evicted so far")
        return turns

    def turns(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    def window(self, size: int) -> list[Turn]:
        """Most recent ``size`` turns, oldest first."""
        if size <= 0:
            return []
        return list(self._turns)[-size:]

    def slice(self, start: int, end: int) -> list[Turn]:
        """Turns by retained position, clamped to the valid range."""
        length = len(self._turns)
        if length == 0:
            return []
        start = max(0, min(start, length - 1))
        end = max(start, min(end, length))
        return list(self._turns)[start:end]

    def last_of(self, role: TurnRole) -> Turn | None:
        for turn in reversed(self._turns):
            if turn.role == role:
                return turn
        return None

    @property
    def evicted(self) -> int:
        return self._evicted

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self):
        return iter(tuple(self._turns))
