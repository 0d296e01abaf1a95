from __future__ import annotations

import time

import pytest

from folio.blocks import block_text
from folio.config import ReaderConfig
from folio.loader import ChapterRef, LoadError
from folio.rsvp import STATUS_STOPPED
from folio.session import MODE_READ, MODE_RSVP, NOTHING_TO_PLAY, Pane, ReadingSession, locate_word

C1 = "text/c1.xhtml"
C2 = "text/c2.xhtml"
C3 = "text/c3.xhtml"


class DictLoader:
    def __init__(self, chapters: dict[str, str], missing: tuple[str, ...] = ()) -> None:
        self.markup = dict(chapters)
        self.ids = list(chapters) + list(missing)
        self.fetches: list[str] = []

    def chapters(self) -> list[ChapterRef]:
        return [ChapterRef(idx, chapter_id, chapter_id) for idx, chapter_id in enumerate(self.ids)]

    def fetch(self, chapter_id: str) -> str:
        self.fetches.append(chapter_id)
        try:
            return self.markup[chapter_id]
        except KeyError as exc:
            raise LoadError(f"missing chapter {chapter_id}") from exc


def _chapter_one() -> str:
    paragraphs = "".join(
        f'<p id="p{idx}">Paragraph number {idx} has a few words in it.</p>' for idx in range(12)
    )
    return f"<html><body><h1>One</h1>{paragraphs}</body></html>"


def _book(**extra: str) -> DictLoader:
    chapters = {
        C1: _chapter_one(),
        C2: "<html><body><h1 id='top'>Two</h1><p id='sec'>Second chapter text.</p></body></html>",
        C3: "<html><body><p>Third.</p></body></html>",
    }
    chapters.update(extra)
    return DictLoader(chapters)


def _session(loader: DictLoader | None = None, **config) -> ReadingSession:
    settings = {"width": 30, "height": 5}
    settings.update(config)
    return ReadingSession(loader or _book(), ReaderConfig(**settings), clock=lambda: 0.0)


def _drain(session: ReadingSession, timeout: float = 5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        results = session.poll()
        if results:
            return results
        time.sleep(0.01)
    raise AssertionError("prefetch did not finish")


def test_construction_does_not_fetch() -> None:
    loader = _book()
    with _session(loader) as session:
        assert loader.fetches == []
        assert session.chapter_count == 3
        assert session.chapter.chapter_id == C1


def test_lines_and_pages_for_first_chapter() -> None:
    with _session() as session:
        lines = session.lines()
        assert len(lines) == 38
        assert lines[0].text == "One"
        assert lines[2].text == "Paragraph number 0 has a few"
        assert len(session.pages()) == 8
        assert session.chapter_progress() == pytest.approx(1 / 8)
        assert session.go_to_page(99) == 7
        assert session.chapter_progress() == pytest.approx(1.0)
        assert len(session.page_lines()) == 3


def test_rsvp_round_trip_returns_to_the_same_page() -> None:
    with _session() as session:
        for page_index in range(len(session.pages())):
            session.go_to_page(page_index)
            entered = session.enter_rsvp()
            assert entered.entered
            assert entered.mode == MODE_RSVP
            assert entered.page_index == page_index
            left = session.exit_rsvp()
            assert not left.entered
            assert left.mode == MODE_READ
            assert left.page_index == page_index
            assert session.current_page_index() == page_index


def test_entering_rsvp_starts_at_first_word_of_page() -> None:
    with _session() as session:
        session.go_to_page(1)
        entered = session.enter_rsvp()
        token = session.player.current
        assert (token.block_index, token.word_index) == (2, 0)
        assert entered.word_index == 10


def test_exiting_after_stepping_shows_the_current_word() -> None:
    with _session() as session:
        session.go_to_page(0)
        session.enter_rsvp()
        last = session.player.total - 1
        session.player.seek(last)
        token = session.player.current
        lines = session.lines()
        line_index = next(
            idx
            for idx, line in enumerate(lines)
            if line.block_index == token.block_index and line.word_start <= token.word_index < line.word_end
        )
        left = session.exit_rsvp()
        assert left.page_index == line_index // 5
        assert left.word_index == last
        assert left.page_index == 7
        assert session.current_page_index() == line_index // 5


def test_nothing_to_play_keeps_read_mode() -> None:
    loader = DictLoader({"only.xhtml": "<pre>code only</pre><img alt='pic' src='p.png'/>"})
    with _session(loader) as session:
        transition = session.enter_rsvp()
        assert not transition.entered
        assert transition.message == NOTHING_TO_PLAY
        assert session.mode == MODE_READ
        assert session.player.status == STATUS_STOPPED


def test_empty_document() -> None:
    with _session(DictLoader({})) as session:
        assert session.chapter_count == 0
        assert session.chapter is None
        assert session.lines() == ()
        assert session.open_chapter(3) is None
        assert session.enter_rsvp().message == NOTHING_TO_PLAY
        assert session.jump_to_anchor("x") is None
        assert session.chapter_progress() == 0.0
        assert session.search_forward("x") is None


def test_resize_keeps_reading_position_and_evicts_old_width() -> None:
    with _session() as session:
        session.go_to_page(4)
        line = session.lines()[session.panes[0].line_index]
        assert (line.block_index, line.word_start) == (7, 0)
        evicted = session.resize(40, 5)
        assert evicted == [(C1, 30)]
        moved = session.lines()[session.panes[0].line_index]
        assert (moved.block_index, moved.word_start) == (7, 0)
        assert session.cache.keys() == [(C1, 40)]


def test_changing_one_pane_width_evicts_only_that_width() -> None:
    with _session() as session:
        session.open_chapter(0)
        session.set_panes([Pane(30, 5), Pane(40, 5)])
        assert session.cache.keys() == [(C1, 30), (C1, 40)]
        evicted = session.set_panes([Pane(30, 5), Pane(50, 5)])
        assert evicted == [(C1, 40)]
        assert (C1, 30) in session.cache
        assert session.active_widths() == [30, 50]


def test_two_pane_pages_advance_together() -> None:
    with _session(two_pane=True) as session:
        assert [pane.width for pane in session.panes] == [30, 30]
        session.go_to_page(0)
        assert session.panes[1].line_index == 5
        session.next_page()
        assert session.current_page_index(0) == 2
        assert session.current_page_index(1) == 3
        session.previous_page()
        assert session.current_page_index(0) == 0
        session.go_to_page(7)
        assert session.page_lines(1) == ()


def test_two_pane_falls_back_to_one_pane_when_narrow() -> None:
    with _session() as session:
        assert not session.two_pane
        assert session.toggle_two_pane()
        assert len(session.panes) == 1
        session.resize(62, 5)
        assert len(session.panes) == 2


def test_jump_to_anchor() -> None:
    with _session() as session:
        assert session.jump_to_anchor("p6") == 4
        assert session.current_page_index() == 4
        assert session.jump_to_anchor("c2.xhtml#sec") == 0
        assert session.chapter_index == 1
        assert session.jump_to_anchor("c3.xhtml") == 0
        assert session.chapter_index == 2
        assert session.jump_to_anchor("nowhere") is None
        assert session.chapter_index == 2


def test_open_chapter_clamps_and_evicts_outside_window() -> None:
    with _session() as session:
        session.lines()
        assert session.open_chapter(1).chapter_id == C2
        assert session.open_chapter(9).chapter_id == C3
        assert session.loaded_chapters() == [1, 2]
        assert all(key[0] != C1 for key in session.cache.keys())
        assert session.previous_chapter().chapter_id == C2


def test_changing_chapter_leaves_rsvp() -> None:
    with _session() as session:
        assert session.enter_rsvp().entered
        session.next_chapter()
        assert session.mode == MODE_READ
        assert session.player.status == STATUS_STOPPED
        assert session.panes[0].line_index == 0
        assert not session.tick()


def test_prefetch_fills_cache_in_background() -> None:
    with _session() as session:
        session.lines()
        assert session.prefetch(1)
        assert not session.prefetch(1)
        results = _drain(session)
        assert [result.chapter_id for result in results] == [C2]
        assert results[0].ok
        assert (C2, 30) in session.cache
        assert 1 in session.loaded_chapters()
        assert not session.prefetch(1)
        assert not session.prefetch(7)


def test_prefetch_results_after_cancel_are_stale() -> None:
    with _session() as session:
        assert session.prefetch(2)
        session.pool.cancel()
        results = _drain(session)
        assert results[0].stale
        assert 2 not in session.loaded_chapters()


def test_foreground_lines_wait_for_prefetched_layout() -> None:
    loader = _book()
    with _session(loader) as session:
        assert session.prefetch(0)
        lines = session.lines()
        assert len(lines) == 38
        assert session.cache.computations == 0


def test_failed_prefetch_reports_error() -> None:
    loader = DictLoader({C1: _chapter_one()}, missing=("text/gone.xhtml",))
    with _session(loader) as session:
        assert session.prefetch(1)
        results = _drain(session)
        assert not results[0].ok
        assert "missing chapter" in results[0].error
        assert not session.cache.in_flight("text/gone.xhtml", 30)
        with pytest.raises(LoadError):
            session.open_chapter(1)


def test_reload_chapter_replaces_blocks_and_layout() -> None:
    loader = _book()
    with _session(loader) as session:
        session.go_to_page(7)
        loader.markup[C1] = "<p>Rewritten.</p>"
        session.reload_chapter()
        assert [block_text(block) for block in session.blocks()] == ["Rewritten."]
        assert [line.text for line in session.lines()] == ["Rewritten.", ""]
        assert session.panes[0].line_index == 1


def test_locate_word_falls_back_to_block_start() -> None:
    with _session() as session:
        lines = session.lines()
        assert locate_word(lines, 1, 0) == 2
        assert locate_word(lines, 1, 6) == 3
        assert locate_word(lines, 1, 99) == 3
        assert locate_word(lines, 99, 0) == len(lines) - 1


@pytest.mark.parametrize(("height", "expected"), [(40, 0), (10, 3), (5, 7)])
def test_exit_after_resize_maps_into_the_new_layout(height: int, expected: int) -> None:
    with _session() as session:
        session.go_to_page(7)
        entered = session.enter_rsvp()
        session.resize(30, height)
        left = session.exit_rsvp()
        assert left.page_index == expected
        assert left.word_index == entered.word_index
        assert session.current_page_index() == expected
        assert session.mode == MODE_READ


def test_exit_after_toggling_two_pane_shows_the_current_word() -> None:
    with _session(two_pane=True) as session:
        session.go_to_page(2)
        session.enter_rsvp()
        token = session.player.current
        assert not session.toggle_two_pane()
        assert len(session.panes) == 1
        left = session.exit_rsvp()
        lines = session.lines()
        page = session.pages()[left.page_index]
        assert page.start <= locate_word(lines, token.block_index, token.word_index) < page.end
        assert session.current_page_index() == left.page_index


def test_rsvp_round_trip_from_the_second_pane() -> None:
    with _session(two_pane=True) as session:
        session.go_to_page(0)
        session.focus = 1
        entered = session.enter_rsvp()
        assert entered.page_index == 1
        assert entered.word_index == 10
        token = session.player.current
        assert (token.block_index, token.word_index) == (2, 0)
        left = session.exit_rsvp()
        assert left.page_index == 1
        assert session.panes[1].line_index == 5
        assert session.panes[0].line_index == 0


def test_noteref_into_another_file_is_followed() -> None:
    loader = DictLoader(
        {
            C1: '<html><body><p>See the note<a epub:type="noteref" href="notes.xhtml#n1">1</a>.</p></body></html>',
            "text/notes.xhtml": '<html><body><p id="n0">Zero.</p><p id="n1">The note.</p></body></html>',
        }
    )
    with _session(loader) as session:
        targets = [span.target for block in session.blocks() for span in block.spans if span.target]
        assert targets == ["notes.xhtml#n1"]
        assert session.jump_to_anchor(targets[0]) == 0
        assert session.chapter_index == 1
        assert session.lines()[session.panes[0].line_index].text == "The note."
        session.open_chapter(0)
        assert session.jump_to_anchor("n1") == 0
        assert session.chapter_index == 1


def test_search_forward_is_case_insensitive_and_spans_lines() -> None:
    with _session() as session:
        assert session.search_forward("a few words") == 0
        assert session.search_forward("NUMBER 5") == 3
        assert session.current_page_index() == 3
        assert session.search_forward("paragraph number 11") == 7
        assert session.search_forward("zebra") is None
        assert session.current_page_index() == 7
        assert session.search_forward("   ") is None


def test_repeated_search_continues_after_the_last_hit() -> None:
    with _session() as session:
        hits = [session.search_forward("words in it") for _ in range(9)]
        assert hits == [0, 1, 2, 3, 4, 5, 6, 7, 0]
        assert session.search_forward("Words In It", start_page=5) == 5
