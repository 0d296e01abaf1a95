from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Sequence

from .config import ReaderConfig, clamp_wpm
from .words import PAUSE_COMMA, PAUSE_SENTENCE_END, WordToken, orp_index, split_at_orp

STATUS_STOPPED = "stopped"
STATUS_PLAYING = "playing"
STATUS_PAUSED = "paused"


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass(slots=True)
class SpritzState:
    index: int = 0
    status: str = STATUS_STOPPED
    wpm: int = 250
    pause_on_punct: bool = True
    punct_pause_ms: int = 100
    last_advance_ms: float = 0.0


@dataclass(frozen=True, slots=True)
class RsvpFrame:
    left: str
    pivot: str
    right: str
    pivot_index: int
    progress: float
    wpm: int
    status: str
    index: int
    total: int
    token: WordToken | None = None


class RsvpPlayer:
    """
    Word-at-a-time playback over a WordToken stream.

    ``stopped`` means no stream is loaded. ``load`` moves to ``paused``;
    ``play``/``pause`` flip between ``playing`` and ``paused``. The clock is
    injectable and returns milliseconds.
    """

    def __init__(
        self,
        config: ReaderConfig | None = None,
        clock: Callable[[], float] = _monotonic_ms,
    ) -> None:
        config = config or ReaderConfig()
        self.state = SpritzState(
            wpm=clamp_wpm(config.wpm),
            pause_on_punct=config.pause_on_punct,
            punct_pause_ms=max(0, config.punct_pause_ms),
        )
        self.tokens: list[WordToken] = []
        self.chapter_index: int | None = None
        self._clock = clock

    @property
    def status(self) -> str:
        return self.state.status

    @property
    def index(self) -> int:
        return self.state.index

    @property
    def total(self) -> int:
        return len(self.tokens)

    @property
    def current(self) -> WordToken | None:
        if not self.tokens:
            return None
        return self.tokens[self.state.index]

    def _clamp(self, index: int) -> int:
        return max(0, min(index, len(self.tokens) - 1))

    def load(self, tokens: Sequence[WordToken], chapter_index: int, start_index: int = 0) -> bool:
        """Install a stream. Returns False (and stays stopped) when it is empty."""
        if chapter_index != self.chapter_index:
            self.state.index = 0
            self.state.last_advance_ms = 0.0
        self.tokens = list(tokens)
        self.chapter_index = chapter_index
        if not self.tokens:
            self.state.index = 0
            self.state.status = STATUS_STOPPED
            return False
        self.state.index = self._clamp(start_index)
        self.state.status = STATUS_PAUSED
        self.state.last_advance_ms = self._clock()
        return True

    def play(self) -> bool:
        if self.state.status == STATUS_STOPPED:
            return False
        self.state.status = STATUS_PLAYING
        self.state.last_advance_ms = self._clock()
        return True

    def pause(self) -> bool:
        if self.state.status == STATUS_STOPPED:
            return False
        self.state.status = STATUS_PAUSED
        return True

    def toggle(self) -> str:
        if self.state.status == STATUS_PLAYING:
            self.pause()
        elif self.state.status == STATUS_PAUSED:
            self.play()
        return self.state.status

    def delay_ms(self, token: WordToken | None = None) -> float:
        token = token if token is not None else self.current
        delay = 60000 / self.state.wpm
        if token is None:
            return delay
        if token.pause == PAUSE_SENTENCE_END:
            delay += self.state.punct_pause_ms
        elif token.pause == PAUSE_COMMA and self.state.pause_on_punct:
            delay += self.state.punct_pause_ms
        return delay

    def advance(self, now: float | None = None) -> bool:
        """Move to the next word once the current word's delay has elapsed."""
        if self.state.status != STATUS_PLAYING:
            return False
        now = self._clock() if now is None else now
        if now - self.state.last_advance_ms < self.delay_ms():
            return False
        self.state.last_advance_ms = now
        if self.state.index >= len(self.tokens) - 1:
            self.state.status = STATUS_PAUSED
            return False
        self.state.index += 1
        return True

    def step(self, count: int) -> int:
        if self.tokens:
            self.state.index = self._clamp(self.state.index + count)
            self.state.last_advance_ms = self._clock()
        return self.state.index

    def seek(self, index: int) -> int:
        if self.tokens:
            self.state.index = self._clamp(index)
            self.state.last_advance_ms = self._clock()
        return self.state.index

    def rewind_to_chapter_start(self) -> int:
        current = self.current
        if current is None:
            return self.state.index
        for idx, token in enumerate(self.tokens):
            if token.chapter_index == current.chapter_index:
                return self.seek(idx)
        return self.state.index

    def fast_forward_to_chapter_end(self) -> int:
        current = self.current
        if current is None:
            return self.state.index
        for idx in range(len(self.tokens) - 1, -1, -1):
            if self.tokens[idx].chapter_index == current.chapter_index:
                return self.seek(idx)
        return self.state.index

    def set_wpm(self, wpm: int) -> int:
        self.state.wpm = clamp_wpm(wpm)
        return self.state.wpm

    def adjust_wpm(self, delta: int) -> int:
        return self.set_wpm(self.state.wpm + delta)

    def progress(self) -> float:
        if not self.tokens:
            return 0.0
        return self.state.index / len(self.tokens)

    def frame(self) -> RsvpFrame:
        token = self.current
        if token is None:
            return RsvpFrame("", "", "", 0, 0.0, self.state.wpm, self.state.status, 0, 0)
        left, pivot, right = split_at_orp(token.text)
        return RsvpFrame(
            left,
            pivot,
            right,
            orp_index(token.text),
            self.progress(),
            self.state.wpm,
            self.state.status,
            self.state.index,
            len(self.tokens),
            token,
        )

    def stop(self) -> None:
        self.tokens = []
        self.chapter_index = None
        self.state.index = 0
        self.state.status = STATUS_STOPPED


__all__ = [
    "RsvpFrame",
    "RsvpPlayer",
    "STATUS_PAUSED",
    "STATUS_PLAYING",
    "STATUS_STOPPED",
    "SpritzState",
]
