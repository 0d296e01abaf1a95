from __future__ import annotations

import pytest

from folio.config import ReaderConfig
from folio.rsvp import STATUS_PAUSED, STATUS_PLAYING, STATUS_STOPPED, RsvpPlayer
from folio.words import PAUSE_COMMA, PAUSE_NONE, PAUSE_SENTENCE_END, WordToken


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _tokens(*pauses: str, chapter_index: int = 0) -> list[WordToken]:
    return [WordToken(f"w{idx}", pause, chapter_index, 0, idx) for idx, pause in enumerate(pauses)]


def _player(**overrides) -> tuple[RsvpPlayer, FakeClock]:
    clock = FakeClock()
    return RsvpPlayer(ReaderConfig(**overrides), clock), clock


def test_load_pauses_at_start_index() -> None:
    player, _ = _player()
    assert player.status == STATUS_STOPPED
    assert player.load(_tokens(PAUSE_NONE, PAUSE_NONE, PAUSE_NONE), 0, start_index=1)
    assert player.status == STATUS_PAUSED
    assert player.index == 1
    assert player.current.text == "w1"


def test_loading_an_empty_stream_stays_stopped() -> None:
    player, _ = _player()
    assert not player.load([], 0)
    assert player.status == STATUS_STOPPED
    assert not player.play()
    assert player.frame().total == 0


def test_delay_adds_punctuation_pauses() -> None:
    player, _ = _player(wpm=250)
    none, sentence, comma = _tokens(PAUSE_NONE, PAUSE_SENTENCE_END, PAUSE_COMMA)
    assert player.delay_ms(none) == pytest.approx(240.0)
    assert player.delay_ms(sentence) == pytest.approx(340.0)
    assert player.delay_ms(comma) == pytest.approx(340.0)


def test_comma_pause_needs_pause_on_punct() -> None:
    player, _ = _player(wpm=250, pause_on_punct=False)
    _, sentence, comma = _tokens(PAUSE_NONE, PAUSE_SENTENCE_END, PAUSE_COMMA)
    assert player.delay_ms(comma) == pytest.approx(240.0)
    assert player.delay_ms(sentence) == pytest.approx(340.0)


def test_advance_waits_for_the_delay_while_playing() -> None:
    player, clock = _player(wpm=250)
    player.load(_tokens(PAUSE_NONE, PAUSE_SENTENCE_END, PAUSE_NONE), 0)
    assert not player.advance()
    assert player.play()
    assert player.status == STATUS_PLAYING
    clock.now = 239
    assert not player.advance()
    clock.now = 240
    assert player.advance()
    assert player.index == 1
    clock.now = 240 + 339
    assert not player.advance()
    clock.now = 240 + 340
    assert player.advance()
    assert player.index == 2


def test_paused_player_does_not_advance() -> None:
    player, clock = _player()
    player.load(_tokens(PAUSE_NONE, PAUSE_NONE), 0)
    player.play()
    player.pause()
    clock.now = 10_000
    assert not player.advance()
    assert player.index == 0
    assert player.toggle() == STATUS_PLAYING
    assert player.toggle() == STATUS_PAUSED


def test_playback_pauses_after_the_last_word() -> None:
    player, clock = _player(wpm=1000)
    player.load(_tokens(PAUSE_NONE, PAUSE_NONE), 0)
    player.play()
    clock.now = 60
    assert player.advance()
    clock.now = 120
    assert not player.advance()
    assert player.status == STATUS_PAUSED
    assert player.index == 1


def test_step_and_seek_clamp_to_the_stream() -> None:
    player, _ = _player()
    player.load(_tokens(PAUSE_NONE, PAUSE_NONE, PAUSE_NONE), 0)
    assert player.step(10) == 2
    assert player.step(-10) == 0
    assert player.seek(1) == 1
    assert player.seek(-4) == 0


def test_wpm_is_clamped() -> None:
    player, _ = _player(wpm=250)
    assert player.set_wpm(5000) == 1000
    assert player.set_wpm(10) == 100
    assert player.adjust_wpm(50) == 150
    assert RsvpPlayer(ReaderConfig(wpm=20)).state.wpm == 100


def test_progress_and_frame() -> None:
    player, _ = _player()
    tokens = [WordToken("reading", PAUSE_NONE, 0, 0, 0), WordToken("on", PAUSE_NONE, 0, 0, 1)]
    player.load(tokens, 0)
    assert player.progress() == 0.0
    frame = player.frame()
    assert (frame.left, frame.pivot, frame.right) == ("re", "a", "ding")
    assert frame.pivot_index == 2
    assert frame.total == 2
    player.step(1)
    assert player.progress() == pytest.approx(0.5)


def test_stop_unloads_the_stream() -> None:
    player, _ = _player()
    player.load(_tokens(PAUSE_NONE), 0)
    player.stop()
    assert player.status == STATUS_STOPPED
    assert player.current is None
    assert player.total == 0


def test_reloading_another_chapter_resets_position() -> None:
    player, _ = _player()
    player.load(_tokens(PAUSE_NONE, PAUSE_NONE, PAUSE_NONE), 0, start_index=2)
    assert player.load(_tokens(PAUSE_NONE, PAUSE_NONE, chapter_index=1), 1)
    assert player.index == 0
    assert player.chapter_index == 1


def test_rewind_and_fast_forward_stay_within_chapter() -> None:
    player, _ = _player()
    tokens = _tokens(PAUSE_NONE, PAUSE_NONE) + _tokens(PAUSE_NONE, PAUSE_NONE, PAUSE_NONE, chapter_index=1)
    player.load(tokens, 1, start_index=3)
    assert player.rewind_to_chapter_start() == 2
    assert player.fast_forward_to_chapter_end() == 4
    player.seek(1)
    assert player.fast_forward_to_chapter_end() == 1
    assert player.rewind_to_chapter_start() == 0
