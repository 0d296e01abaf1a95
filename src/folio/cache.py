from __future__ import annotations

import threading
from concurrent.futures import Future
from typing import Callable, Iterable, Sequence

from .blocks import Block
from .logging_utils import debug_log
from .wrap import WrappedLine, wrap_blocks

CacheKey = tuple[str, int]


class LayoutCache:
    """
    Wrapped lines per ``(chapter id, width)``.

    Every key has at most one outstanding computation: the first requester
    owns a ``Future`` and later requesters wait on it. Entries for widths that
    no active pane uses are dropped by ``retain_widths``; a direct
    ``get_or_wrap`` for such a width is still cached until the next call.
    """

    def __init__(
        self,
        resolve_blocks: Callable[[str], Sequence[Block]],
        *,
        hyphenate: bool = False,
        language: str = "en_US",
    ) -> None:
        self._resolve_blocks = resolve_blocks
        self.hyphenate = hyphenate
        self.language = language
        self._entries: dict[CacheKey, tuple[WrappedLine, ...]] = {}
        self._inflight: dict[CacheKey, tuple[Future, int]] = {}
        self._versions: dict[str, int] = {}
        self._active_widths: set[int] | None = None
        self._lock = threading.Lock()
        self.computations = 0

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def keys(self) -> list[CacheKey]:
        with self._lock:
            return sorted(self._entries)

    def get(self, chapter_id: str, width: int) -> tuple[WrappedLine, ...] | None:
        with self._lock:
            return self._entries.get((chapter_id, width))

    def in_flight(self, chapter_id: str, width: int) -> bool:
        with self._lock:
            return (chapter_id, width) in self._inflight

    def reserve(self, chapter_id: str, width: int) -> bool:
        """Claim the computation for a key; False when it is cached or already claimed."""
        key = (chapter_id, width)
        with self._lock:
            if key in self._entries or key in self._inflight:
                return False
            self._inflight[key] = (Future(), self._versions.get(chapter_id, 0))
            return True

    def complete(
        self,
        chapter_id: str,
        width: int,
        lines: Sequence[WrappedLine],
        *,
        requested: bool = False,
    ) -> bool:
        """
        Finish a reserved computation. Returns True when the lines were stored.

        Background results for a width outside the retained set are dropped;
        ``requested`` marks a foreground computation, which is kept until the
        next ``retain_widths`` call.
        """
        key = (chapter_id, width)
        result = tuple(lines)
        with self._lock:
            pending = self._inflight.pop(key, None)
            version = pending[1] if pending is not None else self._versions.get(chapter_id, 0)
            current = version == self._versions.get(chapter_id, 0)
            active = self._active_widths is None or width in self._active_widths
            stored = current and (active or requested)
            if stored:
                self._entries[key] = result
        if pending is not None:
            pending[0].set_result(result)
        if not stored:
            debug_log(f"layout cache discarded {chapter_id}@{width}")
        return stored

    def fail(self, chapter_id: str, width: int, exc: BaseException) -> None:
        with self._lock:
            pending = self._inflight.pop((chapter_id, width), None)
        if pending is not None:
            pending[0].set_exception(exc)

    def compute(self, chapter_id: str, width: int) -> tuple[WrappedLine, ...]:
        blocks = self._resolve_blocks(chapter_id)
        with self._lock:
            self.computations += 1
        debug_log(f"layout cache wrapping {chapter_id}@{width}")
        return wrap_blocks(blocks, width, hyphenate=self.hyphenate, language=self.language)

    def get_or_wrap(self, chapter_id: str, width: int) -> tuple[WrappedLine, ...]:
        key = (chapter_id, width)
        with self._lock:
            cached = self._entries.get(key)
            if cached is not None:
                return cached
            pending = self._inflight.get(key)
            if pending is None:
                self._inflight[key] = (Future(), self._versions.get(chapter_id, 0))
        if pending is not None:
            debug_log(f"layout cache waiting on {chapter_id}@{width}")
            return pending[0].result()
        try:
            lines = self.compute(chapter_id, width)
        except BaseException as exc:
            self.fail(chapter_id, width, exc)
            raise
        self.complete(chapter_id, width, lines, requested=True)
        return lines

    def retain_widths(self, widths: Iterable[int]) -> list[CacheKey]:
        """Keep entries for ``widths`` only and return the evicted keys."""
        active = set(widths)
        with self._lock:
            self._active_widths = active
            evicted = sorted(key for key in self._entries if key[1] not in active)
            for key in evicted:
                del self._entries[key]
        if evicted:
            debug_log(f"layout cache evicted {len(evicted)} entr{'y' if len(evicted) == 1 else 'ies'}")
        return evicted

    def invalidate(self, chapter_id: str) -> list[CacheKey]:
        """Drop every width for a chapter whose content changed."""
        with self._lock:
            self._versions[chapter_id] = self._versions.get(chapter_id, 0) + 1
            dropped = sorted(key for key in self._entries if key[0] == chapter_id)
            for key in dropped:
                del self._entries[key]
        return dropped

    def drop_chapter(self, chapter_id: str) -> list[CacheKey]:
        return self.invalidate(chapter_id)

    def clear(self) -> None:
        with self._lock:
            for chapter_id in {key[0] for key in self._entries}:
                self._versions[chapter_id] = self._versions.get(chapter_id, 0) + 1
            self._entries.clear()


__all__ = ["CacheKey", "LayoutCache"]
