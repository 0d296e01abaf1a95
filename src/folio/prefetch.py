from __future__ import annotations

import os
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Callable, Mapping, Sequence

from .blocks import Block
from .config import MAX_WORKERS
from .loader import LoadError
from .logging_utils import debug_log
from .normalize import normalize_chapter
from .wrap import WrappedLine, wrap_blocks


@dataclass(frozen=True)
class PrefetchResult:
    chapter_index: int
    chapter_id: str
    generation: int
    widths: tuple[int, ...] = ()
    blocks: tuple[Block, ...] | None = None
    lines: dict[int, tuple[WrappedLine, ...]] = field(default_factory=dict)
    error: str | None = None
    stale: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def _worker_count(max_workers: int, env: Mapping[str, str]) -> int:
    workers = max_workers
    env_workers = env.get("FOLIO_WORKERS")
    if env_workers:
        try:
            parsed = int(env_workers)
            if parsed > 0:
                workers = parsed
        except ValueError:
            workers = max_workers
    return max(1, min(workers, MAX_WORKERS))


class PrefetchPool:
    """
    Background normalize and wrap jobs.

    Workers never touch session state: each job posts one PrefetchResult to
    ``results`` and the foreground loop drains it with ``poll``. ``cancel``
    starts a new generation; results from older generations come back marked
    ``stale``.
    """

    def __init__(
        self,
        fetch: Callable[[str], str],
        *,
        hyphenate: bool = False,
        language: str = "en_US",
        max_workers: int = 2,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.fetch = fetch
        self.hyphenate = hyphenate
        self.language = language
        self.lock = threading.Lock()
        workers = _worker_count(max_workers, os.environ if env is None else env)
        self.workers = workers
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="folio-prefetch")
        self.results: queue.Queue[PrefetchResult] = queue.Queue()
        self.generation = 0
        self._pending: dict[str, int] = {}
        self._closed = False

    def is_pending(self, chapter_id: str) -> bool:
        with self.lock:
            return chapter_id in self._pending

    def submit(
        self,
        chapter_index: int,
        chapter_id: str,
        widths: Sequence[int],
        blocks: Sequence[Block] | None = None,
    ) -> bool:
        """Queue a job; False when the chapter already has one in flight."""
        with self.lock:
            if self._closed or chapter_id in self._pending:
                return False
            self._pending[chapter_id] = self.generation
            generation = self.generation
        frozen = tuple(blocks) if blocks is not None else None
        debug_log(f"prefetch submit {chapter_id} widths={list(widths)}")
        self.executor.submit(self._run, chapter_index, chapter_id, tuple(widths), frozen, generation)
        return True

    def _run(
        self,
        chapter_index: int,
        chapter_id: str,
        widths: tuple[int, ...],
        blocks: tuple[Block, ...] | None,
        generation: int,
    ) -> None:
        try:
            if blocks is None:
                blocks = tuple(normalize_chapter(self.fetch(chapter_id)))
            lines = {
                width: wrap_blocks(blocks, width, hyphenate=self.hyphenate, language=self.language)
                for width in widths
            }
            result = PrefetchResult(chapter_index, chapter_id, generation, widths, blocks, lines)
        except LoadError as exc:
            result = PrefetchResult(chapter_index, chapter_id, generation, widths, error=str(exc))
        except Exception as exc:  # reported through the result channel
            result = PrefetchResult(
                chapter_index, chapter_id, generation, widths, error=f"{type(exc).__name__}: {exc}"
            )
        self.results.put(result)

    def cancel(self) -> int:
        """Invalidate in-flight jobs for UI purposes; their output is still delivered."""
        with self.lock:
            self.generation += 1
            return self.generation

    def poll(self, *, block: bool = False, timeout: float | None = None) -> list[PrefetchResult]:
        drained: list[PrefetchResult] = []
        try:
            if block:
                drained.append(self.results.get(timeout=timeout))
            while True:
                drained.append(self.results.get_nowait())
        except queue.Empty:
            pass
        with self.lock:
            generation = self.generation
            for result in drained:
                self._pending.pop(result.chapter_id, None)
        marked = [
            replace(result, stale=True) if result.generation != generation else result
            for result in drained
        ]
        for result in marked:
            debug_log(
                f"prefetch done {result.chapter_id}"
                + (" (stale)" if result.stale else "")
                + (f" error={result.error}" if result.error else "")
            )
        return marked

    def shutdown(self, wait: bool = False) -> None:
        with self.lock:
            self._closed = True
        self.executor.shutdown(wait=wait, cancel_futures=True)


__all__ = ["PrefetchPool", "PrefetchResult"]
