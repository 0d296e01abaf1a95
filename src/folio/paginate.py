from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from typing import Sequence

from .wrap import WrappedLine


@dataclass(frozen=True, slots=True)
class Page:
    start: int
    end: int

    def __len__(self) -> int:
        return self.end - self.start

    def __contains__(self, line_index: object) -> bool:
        return isinstance(line_index, int) and self.start <= line_index < self.end


def paginate(lines: Sequence[WrappedLine], viewport_height: int) -> list[Page]:
    if viewport_height < 1:
        raise ValueError(f"Viewport height must be at least 1, got {viewport_height}")
    total = len(lines)
    return [Page(start, min(start + viewport_height, total)) for start in range(0, total, viewport_height)]


def page_index_for_line(pages: Sequence[Page], line_index: int) -> int:
    """Index of the page holding ``line_index``; out-of-range lines clamp to the ends."""
    if not pages:
        return 0
    starts = [page.start for page in pages]
    idx = bisect_right(starts, line_index) - 1
    return max(0, min(idx, len(pages) - 1))


def page_for_line(pages: Sequence[Page], line_index: int) -> Page | None:
    if not pages:
        return None
    return pages[page_index_for_line(pages, line_index)]


__all__ = ["Page", "page_for_line", "page_index_for_line", "paginate"]
