from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence

from .blocks import Block
from .cache import LayoutCache
from .config import ReaderConfig
from .loader import ChapterRef, DocumentLoader, LoadError
from .logging_utils import debug_log
from .normalize import normalize_chapter
from .paginate import Page, page_index_for_line, paginate
from .prefetch import PrefetchPool, PrefetchResult
from .rsvp import RsvpFrame, RsvpPlayer
from .words import WordToken, extract_words
from .wrap import WrappedLine

MODE_READ = "read"
MODE_RSVP = "rsvp"
PANE_GUTTER = 2
NOTHING_TO_PLAY = "nothing to play"


@dataclass(slots=True)
class Pane:
    width: int
    height: int
    line_index: int = 0


@dataclass(frozen=True, slots=True)
class ModeTransition:
    """
    Reading position after entering or leaving RSVP.

    ``entered`` is True while RSVP playback is active after the transition.
    """

    mode: str
    chapter_index: int
    page_index: int
    line_index: int
    word_index: int
    entered: bool
    message: str | None = None


@dataclass(slots=True)
class _Chapter:
    ref: ChapterRef
    blocks: tuple[Block, ...]
    anchors: dict[str, int]


@dataclass(frozen=True, slots=True)
class _RsvpEntry:
    chapter_index: int
    pane: int
    page_index: int
    word_index: int
    width: int
    height: int


def _anchor_map(blocks: Sequence[Block]) -> dict[str, int]:
    anchors: dict[str, int] = {}
    for index, block in enumerate(blocks):
        for anchor in block.anchors:
            anchors.setdefault(anchor, index)
    return anchors


def locate_word(lines: Sequence[WrappedLine], block_index: int, word_index: int) -> int:
    """Index of the line on which a block-local word begins (block start when unknown)."""
    first_of_block: int | None = None
    best: int | None = None
    for idx, line in enumerate(lines):
        if line.block_index < block_index:
            continue
        if line.block_index > block_index:
            if first_of_block is None:
                first_of_block = idx
            break
        if first_of_block is None:
            first_of_block = idx
        if line.has_words and line.word_start <= word_index:
            best = idx
        elif line.word_start > word_index:
            break
    if best is not None:
        return best
    if first_of_block is not None:
        return first_of_block
    return max(0, len(lines) - 1)


class ReadingSession:
    """
    One open book: panes, loaded chapters, the layout cache and RSVP playback.

    All mutation happens on the caller's thread; background prefetch output is
    applied only from ``poll``.
    """

    def __init__(
        self,
        loader: DocumentLoader,
        config: ReaderConfig | None = None,
        *,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.loader = loader
        self.config = (config or ReaderConfig()).clamped()
        self.chapter_refs: list[ChapterRef] = loader.chapters()
        self._by_id = {ref.chapter_id: ref for ref in self.chapter_refs}
        self._chapters: dict[int, _Chapter] = {}
        self.cache = LayoutCache(
            self._resolve_blocks,
            hyphenate=self.config.hyphenate,
            language=self.config.hyphen_language,
        )
        self.pool = PrefetchPool(
            loader.fetch,
            hyphenate=self.config.hyphenate,
            language=self.config.hyphen_language,
            max_workers=self.config.workers,
        )
        self.player = RsvpPlayer(self.config, clock) if clock is not None else RsvpPlayer(self.config)
        self.mode = MODE_READ
        self.chapter_index = 0
        self.focus = 0
        self.two_pane = self.config.two_pane
        self.total_width = self.config.width
        self.total_height = self.config.height
        self.panes: list[Pane] = []
        self._rsvp_entry: _RsvpEntry | None = None
        self._last_search: tuple[str, int] | None = None
        width = self.config.width
        if self.two_pane:
            width = width * 2 + PANE_GUTTER
        self.resize(width, self.config.height)

    def __enter__(self) -> "ReadingSession":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # chapters -------------------------------------------------------------

    @property
    def chapter_count(self) -> int:
        return len(self.chapter_refs)

    @property
    def chapter(self) -> ChapterRef | None:
        if not self.chapter_refs:
            return None
        return self.chapter_refs[self.chapter_index]

    def loaded_chapters(self) -> list[int]:
        return sorted(self._chapters)

    def _load(self, index: int) -> _Chapter:
        loaded = self._chapters.get(index)
        if loaded is not None:
            return loaded
        ref = self.chapter_refs[index]
        markup = self.loader.fetch(ref.chapter_id)
        blocks = tuple(normalize_chapter(markup))
        loaded = _Chapter(ref, blocks, _anchor_map(blocks))
        self._chapters[index] = loaded
        debug_log(f"loaded chapter {index} ({ref.chapter_id}): {len(blocks)} block(s)")
        return loaded

    def _resolve_blocks(self, chapter_id: str) -> tuple[Block, ...]:
        ref = self._by_id.get(chapter_id)
        if ref is None:
            raise LoadError(f"Unknown chapter: {chapter_id}")
        return self._load(ref.index).blocks

    def blocks(self, index: int | None = None) -> tuple[Block, ...]:
        if not self.chapter_refs:
            return ()
        return self._load(self.chapter_index if index is None else index).blocks

    def _evict_outside_window(self) -> None:
        window = self.config.prefetch_window
        for index in list(self._chapters):
            if abs(index - self.chapter_index) > window:
                chapter = self._chapters.pop(index)
                self.cache.drop_chapter(chapter.ref.chapter_id)
                debug_log(f"evicted chapter {index}")

    def open_chapter(self, index: int) -> ChapterRef | None:
        """Make ``index`` (clamped) the current chapter; LoadError propagates."""
        if not self.chapter_refs:
            return None
        index = max(0, min(index, len(self.chapter_refs) - 1))
        self._load(index)
        if index != self.chapter_index:
            self.player.stop()
            self.mode = MODE_READ
            self._rsvp_entry = None
            self.pool.cancel()
            self._last_search = None
            for pane in self.panes:
                pane.line_index = 0
        self.chapter_index = index
        self._evict_outside_window()
        self._sync_second_pane()
        return self.chapter_refs[index]

    def next_chapter(self) -> ChapterRef | None:
        return self.open_chapter(self.chapter_index + 1)

    def previous_chapter(self) -> ChapterRef | None:
        return self.open_chapter(self.chapter_index - 1)

    def reload_chapter(self, index: int | None = None) -> ChapterRef | None:
        """Fetch a chapter again and replace its blocks and cached layouts."""
        if not self.chapter_refs:
            return None
        index = self.chapter_index if index is None else index
        ref = self.chapter_refs[index]
        blocks = tuple(normalize_chapter(self.loader.fetch(ref.chapter_id)))
        self._chapters[index] = _Chapter(ref, blocks, _anchor_map(blocks))
        self.cache.invalidate(ref.chapter_id)
        if index == self.chapter_index:
            if self.mode == MODE_RSVP:
                self.player.stop()
                self.mode = MODE_READ
                self._rsvp_entry = None
            for pane_index, pane in enumerate(self.panes):
                total = len(self.lines(pane_index))
                pane.line_index = max(0, min(pane.line_index, total - 1))
        return ref

    # panes ----------------------------------------------------------------

    def active_widths(self) -> list[int]:
        return sorted({pane.width for pane in self.panes})

    def _anchor_position(self) -> tuple[int, int] | None:
        if not self.panes or not self.chapter_refs:
            return None
        ref = self.chapter_refs[self.chapter_index]
        lines = self.cache.get(ref.chapter_id, self.panes[0].width)
        if not lines:
            return None
        line = lines[min(self.panes[0].line_index, len(lines) - 1)]
        return line.block_index, line.word_start

    def set_panes(self, panes: Sequence[Pane]) -> list[tuple[str, int]]:
        """Install panes and evict layouts for widths no pane uses any more."""
        if not panes:
            raise ValueError("At least one pane is required")
        position = self._anchor_position()
        self.panes = [
            Pane(self.config.clamp_width(pane.width), max(1, pane.height), pane.line_index) for pane in panes[:2]
        ]
        self.focus = min(self.focus, len(self.panes) - 1)
        entry = self._rsvp_entry
        if entry is not None and (
            entry.pane >= len(self.panes)
            or (self.panes[entry.pane].width, self.panes[entry.pane].height) != (entry.width, entry.height)
        ):
            # The remembered page belongs to a layout that no longer exists.
            self._rsvp_entry = None
        evicted = self.cache.retain_widths(self.active_widths())
        if position is not None:
            lines = self.lines(0)
            if lines:
                self.panes[0].line_index = locate_word(lines, *position)
        self._sync_second_pane()
        return evicted

    def resize(self, width: int, height: int) -> list[tuple[str, int]]:
        self.total_width = width
        self.total_height = height
        pane_width = (width - PANE_GUTTER) // 2
        if self.two_pane and pane_width >= self.config.min_width:
            panes = [Pane(pane_width, height), Pane(pane_width, height)]
        else:
            panes = [Pane(width, height)]
        if self.panes:
            panes[0].line_index = self.panes[0].line_index
        return self.set_panes(panes)

    def toggle_two_pane(self) -> bool:
        self.two_pane = not self.two_pane
        self.resize(self.total_width, self.total_height)
        return self.two_pane

    def _sync_second_pane(self) -> None:
        if len(self.panes) < 2 or self.chapter_index not in self._chapters:
            return
        first, second = self.panes[0], self.panes[1]
        first_lines = self.lines(0)
        first_pages = paginate(first_lines, first.height)
        same_width = second.width == first.width
        second_lines = first_lines if same_width else self.lines(1)
        if not first_pages or not second_lines or first.line_index >= first_pages[-1].end:
            second.line_index = 0
            return
        page = first_pages[page_index_for_line(first_pages, first.line_index)]
        if page.end >= first_pages[-1].end:
            # Nothing follows; the second pane stays past the end.
            second.line_index = len(second_lines)
            return
        if same_width:
            second.line_index = page.end
            return
        boundary = first_lines[page.end]
        if boundary.is_blank:
            position = (boundary.block_index + 1, 0)
        else:
            position = (boundary.block_index, boundary.word_start)
        second.line_index = locate_word(second_lines, *position)

    # layout ---------------------------------------------------------------

    def lines(self, pane: int = 0) -> tuple[WrappedLine, ...]:
        if not self.chapter_refs:
            return ()
        ref = self.chapter_refs[self.chapter_index]
        width = self.panes[pane].width
        self._load(self.chapter_index)
        while self.cache.in_flight(ref.chapter_id, width) and self.pool.is_pending(ref.chapter_id):
            self._apply(self.pool.poll(block=True, timeout=0.05))
        return self.cache.get_or_wrap(ref.chapter_id, width)

    def pages(self, pane: int = 0) -> list[Page]:
        return paginate(self.lines(pane), self.panes[pane].height)

    def current_page_index(self, pane: int = 0) -> int:
        return page_index_for_line(self.pages(pane), self.panes[pane].line_index)

    def current_page(self, pane: int = 0) -> Page | None:
        pages = self.pages(pane)
        if not pages or self.panes[pane].line_index >= pages[-1].end:
            return None
        return pages[page_index_for_line(pages, self.panes[pane].line_index)]

    def page_lines(self, pane: int = 0) -> tuple[WrappedLine, ...]:
        page = self.current_page(pane)
        if page is None:
            return ()
        return self.lines(pane)[page.start : page.end]

    def go_to_page(self, page_index: int, pane: int | None = None) -> int:
        pane = self.focus if pane is None else pane
        pages = self.pages(pane)
        if not pages:
            return 0
        page_index = max(0, min(page_index, len(pages) - 1))
        self.panes[pane].line_index = pages[page_index].start
        if pane == 0:
            self._sync_second_pane()
        return page_index

    def next_page(self) -> int:
        return self.go_to_page(self.current_page_index(0) + len(self.panes), 0)

    def previous_page(self) -> int:
        return self.go_to_page(self.current_page_index(0) - len(self.panes), 0)

    def jump_to_anchor(self, target: str) -> int | None:
        """
        Move to a link target and return the new page index.

        ``target`` is a bare anchor id, ``file#id`` or a chapter file name.
        Returns None when nothing matches.
        """
        if not self.chapter_refs:
            return None
        path, sep, fragment = target.partition("#")
        anchor = fragment if sep else target
        candidates = [self.chapter_index]
        if sep and path:
            candidates = self._chapters_named(path)
        elif not sep and target not in self._load(self.chapter_index).anchors:
            named = self._chapters_named(target)
            if named:
                candidates, anchor = named, ""
            else:
                # Bare ids may also point into another chapter that is already loaded.
                candidates = [index for index in sorted(self._chapters) if index != self.chapter_index]
        for index in candidates:
            chapter = self._load(index)
            block_index = chapter.anchors.get(anchor) if anchor else 0
            if block_index is None:
                continue
            self.open_chapter(index)
            lines = self.lines(0)
            self.panes[0].line_index = locate_word(lines, block_index, 0) if lines else 0
            self._sync_second_pane()
            return self.current_page_index(0)
        return None

    def _chapters_named(self, path: str) -> list[int]:
        name = path.rsplit("/", 1)[-1]
        return [ref.index for ref in self.chapter_refs if ref.chapter_id.rsplit("/", 1)[-1] == name]

    def search_forward(self, query: str, start_page: int | None = None) -> int | None:
        """
        Move to the next page of the current chapter whose text contains ``query``.

        Matching is case-insensitive and sees the lines of a page joined by
        spaces. Without ``start_page`` the search starts on the current page,
        or just after the previous hit when the query is repeated, and wraps
        around the end of the chapter. Returns the page index or None.
        """
        needle = query.strip().lower()
        pages = self.pages(0) if self.chapter_refs else []
        if not needle or not pages:
            return None
        if start_page is None:
            start_page = self.current_page_index(0)
            if self._last_search is not None and self._last_search[0] == needle:
                start_page = self._last_search[1] + 1
        lines = self.lines(0)
        total = len(pages)
        for offset in range(total):
            index = (start_page + offset) % total
            page = pages[index]
            text = " ".join(line.content_text for line in lines[page.start : page.end]).lower()
            if needle in text:
                self._last_search = (needle, index)
                self.go_to_page(index, 0)
                debug_log(f"search {needle!r} hit page {index}")
                return index
        self._last_search = None
        return None

    def chapter_progress(self) -> float:
        pages = self.pages(0) if self.chapter_refs else []
        if not pages:
            return 0.0
        return (self.current_page_index(0) + 1) / len(pages)

    # background -----------------------------------------------------------

    def prefetch(self, chapter_index: int) -> bool:
        if not 0 <= chapter_index < len(self.chapter_refs):
            return False
        ref = self.chapter_refs[chapter_index]
        if self.pool.is_pending(ref.chapter_id):
            return False
        widths = [width for width in self.active_widths() if self.cache.reserve(ref.chapter_id, width)]
        loaded = self._chapters.get(chapter_index)
        if not widths and loaded is not None:
            return False
        if self.pool.submit(chapter_index, ref.chapter_id, widths, loaded.blocks if loaded else None):
            return True
        for width in widths:
            self.cache.fail(ref.chapter_id, width, LoadError(f"prefetch rejected for {ref.chapter_id}"))
        return False

    def _apply(self, results: Sequence[PrefetchResult]) -> None:
        for result in results:
            if not result.ok:
                for width in result.widths:
                    self.cache.fail(result.chapter_id, width, LoadError(result.error or "prefetch failed"))
                continue
            if not result.stale and result.chapter_index not in self._chapters and result.blocks is not None:
                ref = self.chapter_refs[result.chapter_index]
                self._chapters[result.chapter_index] = _Chapter(ref, result.blocks, _anchor_map(result.blocks))
            for width, lines in result.lines.items():
                self.cache.complete(result.chapter_id, width, lines)

    def poll(self) -> list[PrefetchResult]:
        """Apply finished background work without blocking."""
        results = self.pool.poll()
        self._apply(results)
        return results

    # rsvp -----------------------------------------------------------------

    def _tokens(self) -> list[WordToken]:
        return extract_words(self.blocks(), self.chapter_index)

    def enter_rsvp(self) -> ModeTransition:
        pane = self.focus
        lines = self.lines(pane)
        pages = paginate(lines, self.panes[pane].height)
        page_index = page_index_for_line(pages, self.panes[pane].line_index) if pages else 0
        line_index = pages[page_index].start if pages else 0
        tokens = self._tokens() if self.chapter_refs else []
        if not tokens:
            self.player.stop()
            return ModeTransition(MODE_READ, self.chapter_index, page_index, line_index, 0, False, NOTHING_TO_PLAY)
        lookup = {(token.block_index, token.word_index): idx for idx, token in enumerate(tokens)}
        start = len(tokens) - 1
        for line in lines[line_index:]:
            if line.has_words:
                start = lookup.get((line.block_index, line.word_start), start)
                break
        self.player.load(tokens, self.chapter_index, start)
        self.mode = MODE_RSVP
        width, height = self.panes[pane].width, self.panes[pane].height
        self._rsvp_entry = _RsvpEntry(self.chapter_index, pane, page_index, start, width, height)
        debug_log(f"rsvp enter chapter={self.chapter_index} page={page_index} word={start}")
        return ModeTransition(MODE_RSVP, self.chapter_index, page_index, line_index, start, True)

    def exit_rsvp(self) -> ModeTransition:
        pane = self.focus
        token = self.player.current
        if self.mode != MODE_RSVP or token is None:
            page_index = self.current_page_index(pane) if self.chapter_refs else 0
            return ModeTransition(
                MODE_READ, self.chapter_index, page_index, self.panes[pane].line_index, 0, False
            )
        lines = self.lines(pane)
        pages = paginate(lines, self.panes[pane].height)
        entry = self._rsvp_entry
        word_index = self.player.index
        if entry is not None and entry.pane == pane and entry.word_index == word_index:
            page_index = min(entry.page_index, len(pages) - 1)
        else:
            page_index = page_index_for_line(pages, locate_word(lines, token.block_index, token.word_index))
        line_index = pages[page_index].start
        self.panes[pane].line_index = line_index
        if pane == 0:
            self._sync_second_pane()
        self.player.stop()
        self.mode = MODE_READ
        self._rsvp_entry = None
        debug_log(f"rsvp exit chapter={self.chapter_index} page={page_index} word={word_index}")
        return ModeTransition(MODE_READ, self.chapter_index, page_index, line_index, word_index, False)

    def tick(self, now: float | None = None) -> bool:
        if self.mode != MODE_RSVP:
            return False
        return self.player.advance(now)

    def rsvp_frame(self) -> RsvpFrame:
        return self.player.frame()

    def close(self) -> None:
        self.pool.shutdown()
        self.cache.clear()
        self.player.stop()
        self._chapters.clear()
        self.mode = MODE_READ


__all__ = [
    "MODE_READ",
    "MODE_RSVP",
    "ModeTransition",
    "NOTHING_TO_PLAY",
    "Pane",
    "ReadingSession",
    "locate_word",
]
