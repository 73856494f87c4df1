from __future__ import annotations

from typing import Iterable, Optional

from config import REWIND_RESTART_THRESHOLD_SEC
from errors import NotFoundError


class PlayQueue:
    """
    Ordered song ids plus a cursor.

    While the queue is non-empty the cursor satisfies 0 <= cursor < len.
    Movement wraps around in both directions.
    """

    def __init__(
        self,
        ids: Optional[Iterable[str]] = None,
        *,
        restart_threshold_sec: float = REWIND_RESTART_THRESHOLD_SEC,
    ):
        self.restart_threshold_sec = float(restart_threshold_sec)
        self._ids: list[str] = list(ids) if ids else []
        self._cursor = 0

    def __len__(self) -> int:
        return len(self._ids)

    def __bool__(self) -> bool:
        return bool(self._ids)

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(self._ids)

    @property
    def cursor(self) -> int:
        return self._cursor

    def set_queue(self, ids: Iterable[str]) -> None:
        self._ids = list(ids)
        self._cursor = 0

    def clear(self) -> None:
        self.set_queue([])

    def current(self) -> Optional[str]:
        if not self._ids:
            return None
        return self._ids[self._cursor]

    def skip(self) -> None:
        if not self._ids:
            return
        self._cursor = (self._cursor + 1) % len(self._ids)

    def rewind(self, elapsed_sec: float = 0.0) -> bool:
        """
        Step back one entry, wrapping to the last one.

        Returns False without moving when ``elapsed_sec`` has reached the
        restart threshold; the caller restarts the current track instead.
        """
        if not self._ids:
            return False
        if elapsed_sec >= self.restart_threshold_sec:
            return False
        self._cursor = (self._cursor - 1) % len(self._ids)
        return True

    def select(self, song_id: str) -> None:
        try:
            self._cursor = self._ids.index(song_id)
        except ValueError:
            raise NotFoundError("Queue entry", song_id) from None
