from __future__ import annotations

import re
import unicodedata

from rich.cells import cell_len

__all__ = [
    "clean_text",
    "split_graphemes",
    "grapheme_width",
    "display_width",
    "split_words",
    "break_points",
    "is_cjk_grapheme",
]

# Characters removed outright before spans are built.
_ZERO_WIDTH = {
    "\u00ad",  # soft hyphen
    "\u200b",
    "\u200c",
    "\u200d",
    "\u200e",
    "\u200f",
    "\u2060",
    "\u2061",
    "\u2062",
    "\u2063",
    "\u2064",
    "\ufeff",
}
_SPACE_LIKE = {"\u00a0", "\u202f", "\u2007", "\u3000", "\t", "\r", "\f", "\v"}
_WHITESPACE_RE = re.compile(r"[^\S\n]+")

# Break after these when a letter or digit follows ("re-enter", "and/or").
_BREAK_AFTER = set("-‐–—/")
_NO_BREAK_BEFORE = set(
    "、。，．,.!?！？：；:;」』）】〉》〕］｝)]}…‥ーゝゞヽヾぁぃぅぇぉっゃゅょゎァィゥェォッャュョヮヵヶ々"
)
_NO_BREAK_AFTER = set("「『（【〈《〔［｛([{")


def clean_text(text: str, *, keep_newlines: bool = True, collapse: bool = True) -> str:
    """
    Strip zero-width and non-printable characters and fold odd spaces.

    Newlines survive when ``keep_newlines`` is set so ``<br>`` breaks can be
    carried inside span text. With ``collapse`` every run of other whitespace
    becomes a single space.
    """
    out: list[str] = []
    for ch in unicodedata.normalize("NFC", text):
        if ch in _ZERO_WIDTH:
            continue
        if ch == "\n":
            out.append("\n" if keep_newlines else " ")
            continue
        if ch in _SPACE_LIKE:
            out.append(" ")
            continue
        category = unicodedata.category(ch)
        if category in ("Cc", "Cf", "Cs", "Co", "Cn"):
            continue
        if category in ("Zl", "Zp", "Zs"):
            out.append(" ")
            continue
        out.append(ch)
    cleaned = "".join(out)
    if collapse:
        cleaned = _WHITESPACE_RE.sub(" ", cleaned)
        cleaned = re.sub(r" ?\n ?", "\n", cleaned)
    return cleaned


def _hangul_kind(cp: int) -> str | None:
    if 0x1100 <= cp <= 0x115F or 0xA960 <= cp <= 0xA97C:
        return "L"
    if 0x1160 <= cp <= 0x11A7 or 0xD7B0 <= cp <= 0xD7C6:
        return "V"
    if 0x11A8 <= cp <= 0x11FF or 0xD7CB <= cp <= 0xD7FB:
        return "T"
    if 0xAC00 <= cp <= 0xD7A3:
        return "LV" if (cp - 0xAC00) % 28 == 0 else "LVT"
    return None


def _is_extend(ch: str) -> bool:
    cp = ord(ch)
    if unicodedata.combining(ch):
        return True
    if unicodedata.category(ch) in ("Mn", "Me", "Mc"):
        return True
    if 0xFE00 <= cp <= 0xFE0F or 0xE0100 <= cp <= 0xE01EF:
        return True
    if 0x1F3FB <= cp <= 0x1F3FF or 0xE0020 <= cp <= 0xE007F:
        return True
    return ch == "\u200d"


def _is_regional_indicator(ch: str) -> bool:
    return 0x1F1E6 <= ord(ch) <= 0x1F1FF


def _joins(prev: str, ch: str, cluster: list[str]) -> bool:
    if prev == "\r" and ch == "\n":
        return True
    if prev in "\r\n" or ch in "\r\n":
        return False
    if _is_extend(ch):
        return True
    if prev == "\u200d":
        return True
    if _is_regional_indicator(prev) and _is_regional_indicator(ch):
        run = sum(1 for c in cluster if _is_regional_indicator(c))
        return run % 2 == 1
    prev_kind = _hangul_kind(ord(prev))
    kind = _hangul_kind(ord(ch))
    if prev_kind and kind:
        if prev_kind == "L":
            return kind in ("L", "V", "LV", "LVT")
        if prev_kind in ("V", "LV"):
            return kind in ("V", "T")
        if prev_kind in ("T", "LVT"):
            return kind == "T"
    return False


def split_graphemes(text: str) -> list[str]:
    """Split ``text`` into extended grapheme clusters."""
    clusters: list[str] = []
    current: list[str] = []
    for ch in text:
        if current and _joins(current[-1], ch, current):
            current.append(ch)
            continue
        if current:
            clusters.append("".join(current))
        current = [ch]
    if current:
        clusters.append("".join(current))
    return clusters


def grapheme_width(grapheme: str) -> int:
    if grapheme == "\t":
        return 1
    return cell_len(grapheme)


def display_width(text: str) -> int:
    return sum(grapheme_width(g) for g in split_graphemes(text))


def split_words(text: str) -> list[str]:
    """Whitespace word split shared by the wrap engine and the word extractor."""
    return text.split()


def is_cjk_grapheme(grapheme: str) -> bool:
    if not grapheme:
        return False
    base = grapheme[0]
    if unicodedata.east_asian_width(base) not in ("W", "F"):
        return False
    return unicodedata.category(base).startswith("L")


def break_points(graphemes: list[str]) -> list[int]:
    """
    Return indexes ``i`` where a line may break before ``graphemes[i]``.

    Only opportunities inside a whitespace-delimited word are reported; the
    spaces between words are handled by the caller.
    """
    points: list[int] = []
    for idx in range(1, len(graphemes)):
        prev = graphemes[idx - 1]
        cur = graphemes[idx]
        if cur in _NO_BREAK_BEFORE or prev in _NO_BREAK_AFTER:
            continue
        if prev in _BREAK_AFTER and idx > 1 and cur[0].isalnum():
            points.append(idx)
            continue
        if is_cjk_grapheme(cur) or is_cjk_grapheme(prev):
            points.append(idx)
    return points
