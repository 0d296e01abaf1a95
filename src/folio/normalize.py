from __future__ import annotations

import html
import re
import warnings
from typing import Iterable, Iterator

from bs4 import (
    BeautifulSoup,
    CData,
    Comment,
    Declaration,
    Doctype,
    FeatureNotFound,
    NavigableString,
    ProcessingInstruction,
    Tag,
    XMLParsedAsHTMLWarning,
)  # type: ignore

from .blocks import (
    STYLE_BOLD,
    STYLE_ITALIC,
    STYLE_LINK,
    STYLE_NONE,
    STYLE_UNDERLINE,
    Block,
    CodeBlock,
    Heading,
    ImagePlaceholder,
    InlineSpan,
    ListItem,
    Paragraph,
    Quote,
    merge_spans,
)
from .logging_utils import debug_log
from .text import clean_text


class NormalizeError(ValueError):
    """Raised when chapter markup cannot be turned into blocks."""


# Unsafe or presentation-only elements; their content never reaches the text.
DROP_TAGS = {
    "applet",
    "audio",
    "button",
    "canvas",
    "embed",
    "head",
    "iframe",
    "input",
    "link",
    "map",
    "meta",
    "noscript",
    "object",
    "param",
    "rp",
    "rt",
    "script",
    "select",
    "source",
    "style",
    "template",
    "textarea",
    "title",
    "track",
    "video",
}
INLINE_TAGS = {
    "a",
    "abbr",
    "b",
    "bdi",
    "bdo",
    "big",
    "br",
    "cite",
    "code",
    "data",
    "del",
    "dfn",
    "em",
    "font",
    "i",
    "ins",
    "kbd",
    "label",
    "mark",
    "math",
    "q",
    "rb",
    "ruby",
    "s",
    "samp",
    "small",
    "span",
    "strike",
    "strong",
    "sub",
    "sup",
    "time",
    "tt",
    "u",
    "var",
    "wbr",
}
HEADING_LEVELS = {f"h{level}": level for level in range(1, 7)}
STYLE_TAGS = {
    "b": STYLE_BOLD,
    "strong": STYLE_BOLD,
    "i": STYLE_ITALIC,
    "em": STYLE_ITALIC,
    "cite": STYLE_ITALIC,
    "dfn": STYLE_ITALIC,
    "u": STYLE_UNDERLINE,
    "ins": STYLE_UNDERLINE,
}
# Block-level elements that can appear inside list items, cells and headings.
BREAK_TAGS = {
    "address",
    "article",
    "aside",
    "blockquote",
    "center",
    "dd",
    "div",
    "dl",
    "dt",
    "figcaption",
    "figure",
    "footer",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
    "header",
    "hr",
    "li",
    "main",
    "nav",
    "ol",
    "p",
    "pre",
    "section",
    "table",
    "td",
    "th",
    "tr",
    "ul",
}
_LIST_TAGS = ("ul", "ol")
_TABLE_CELL_SEPARATOR = " | "
_IGNORED_NODES = (Comment, Doctype, ProcessingInstruction, Declaration, CData)


def _soup_from_html(markup: str, *, allow_xml: bool = True) -> BeautifulSoup:
    stripped = markup.lstrip()
    lower_head = stripped[:200].lower()
    xmlish = stripped.startswith("<?xml") or ("<html" in lower_head and "xmlns" in lower_head)

    if xmlish and allow_xml:
        for parser in ("lxml-xml", "xml"):
            try:
                return BeautifulSoup(markup, parser)
            except FeatureNotFound:
                continue

    for parser in ("html5lib", "lxml", "html.parser"):
        try:
            with warnings.catch_warnings():
                warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
                return BeautifulSoup(markup, parser)
        except FeatureNotFound:
            continue

    # html.parser ships with Python; reaching this point means it raised too.
    return BeautifulSoup(markup, "html.parser")


def _tag_name(tag: Tag) -> str:
    return (tag.name or "").split(":")[-1].lower()


def _attr(tag: Tag, name: str) -> str | None:
    value = tag.get(name)
    if value is None:
        for key, candidate in tag.attrs.items():
            if key.split(":")[-1] == name.split(":")[-1] and ":" in name:
                value = candidate
                break
    if isinstance(value, list):
        value = " ".join(value)
    return value if isinstance(value, str) else None


def _classes(tag: Tag) -> list[str]:
    raw = tag.get("class")
    if isinstance(raw, str):
        return raw.split()
    if isinstance(raw, list):
        return [str(item) for item in raw]
    return []


def _anchor_ids(tag: Tag) -> list[str]:
    anchors: list[str] = []
    for key in ("id", "name"):
        if key == "name" and _tag_name(tag) != "a":
            continue
        value = _attr(tag, key)
        if value and value.strip():
            anchors.append(value.strip())
    return anchors


def _link_target(tag: Tag) -> str | None:
    href = (_attr(tag, "href") or "").strip()
    if not href:
        return None
    if href.startswith("#"):
        return href[1:] or None
    return href


def _css_style(tag: Tag) -> str | None:
    css = (_attr(tag, "style") or "").lower().replace(" ", "")
    if not css:
        return None
    if "font-weight:bold" in css or re.search(r"font-weight:[6-9]00", css):
        return STYLE_BOLD
    if "font-style:italic" in css or "font-style:oblique" in css:
        return STYLE_ITALIC
    if "text-decoration:underline" in css or "text-decoration-line:underline" in css:
        return STYLE_UNDERLINE
    return None


def _image_label(tag: Tag) -> str:
    for key in ("alt", "title", "aria-label"):
        value = _attr(tag, key)
        if value:
            label = clean_text(value, keep_newlines=False).strip()
            if label:
                return label
    return ""


def _source_text(node: NavigableString) -> str:
    # Only <br> and block boundaries produce newlines; markup line wrapping does not.
    return str(node).replace("\r", " ").replace("\n", " ")


def _boundary(out: list[InlineSpan], separator: str) -> None:
    for span in reversed(out):
        if "\n" not in span.text and not span.text.strip():
            continue
        if not span.text.rstrip(" \t").endswith(separator):
            out.append(InlineSpan(separator))
        return


def _append_inline(
    node: Tag,
    style: str,
    target: str | None,
    out: list[InlineSpan],
    anchors: list[str],
    skip: Iterable[str] = (),
    separator: str = "\n",
) -> None:
    skip_names = set(skip)
    for child in node.children:
        if isinstance(child, _IGNORED_NODES):
            continue
        if isinstance(child, NavigableString):
            out.append(InlineSpan(_source_text(child), style, target))
            continue
        if not isinstance(child, Tag):
            continue
        name = _tag_name(child)
        if name in DROP_TAGS or name in skip_names:
            continue
        anchors.extend(_anchor_ids(child))
        if name == "br":
            out.append(InlineSpan("\n", style, target))
            continue
        if name == "img":
            label = _image_label(child)
            if label:
                out.append(InlineSpan(f"[{label}]", style, target))
            continue
        child_style = style
        child_target = target
        if name == "a":
            link = _link_target(child)
            if link is not None:
                child_style = STYLE_LINK
                child_target = link
        elif style != STYLE_LINK:
            child_style = STYLE_TAGS.get(name) or (_css_style(child) if name == "span" else None) or style
        if name in BREAK_TAGS:
            _boundary(out, separator)
            _append_inline(child, child_style, child_target, out, anchors, skip_names, separator)
            _boundary(out, separator)
            continue
        _append_inline(child, child_style, child_target, out, anchors, skip_names, separator)


def _finish_spans(raw: Iterable[InlineSpan]) -> tuple[InlineSpan, ...]:
    """Clean span text and collapse whitespace across span boundaries."""
    cleaned: list[InlineSpan] = []
    for span in raw:
        text = clean_text(span.text)
        if not text:
            continue
        tail = cleaned[-1].text[-1:] if cleaned else "\n"
        if tail in (" ", "\n"):
            text = text.lstrip(" ")
        if text.startswith("\n") and cleaned and cleaned[-1].text.endswith(" "):
            last = cleaned.pop()
            if last.text.rstrip(" "):
                cleaned.append(InlineSpan(last.text.rstrip(" "), last.style, last.target))
        if not text:
            continue
        if not cleaned:
            text = text.lstrip(" \n")
            if not text:
                continue
        cleaned.append(InlineSpan(text, span.style, span.target))
    while cleaned:
        last = cleaned[-1]
        trimmed = last.text.rstrip(" \n")
        if trimmed:
            cleaned[-1] = InlineSpan(trimmed, last.style, last.target)
            break
        cleaned.pop()
    return merge_spans(cleaned)


def _nested_lists(node: Tag) -> Iterator[Tag]:
    for child in node.children:
        if not isinstance(child, Tag):
            continue
        if _tag_name(child) in _LIST_TAGS:
            yield child
        elif _tag_name(child) not in DROP_TAGS:
            yield from _nested_lists(child)


def _parse_int(value: str | None, default: int) -> int:
    if not value:
        return default
    digits = re.match(r"\s*(-?\d+)", value)
    if digits is None:
        return default
    return int(digits.group(1))


class _BlockCollector:
    def __init__(self) -> None:
        self.blocks: list[Block] = []
        self.pending: list[InlineSpan] = []
        self.pending_anchors: list[str] = []
        self.carry_anchors: list[str] = []

    def _take_anchors(self, extra: Iterable[str] = ()) -> tuple[str, ...]:
        anchors = [*self.carry_anchors, *extra]
        self.carry_anchors = []
        seen: dict[str, None] = {}
        for anchor in anchors:
            seen.setdefault(anchor, None)
        return tuple(seen)

    def emit(self, block: Block) -> None:
        self.blocks.append(block)

    def flush(self) -> None:
        if not self.pending:
            self.carry_anchors.extend(self.pending_anchors)
            self.pending_anchors = []
            return
        spans = _finish_spans(self.pending)
        anchors = self.pending_anchors
        self.pending = []
        self.pending_anchors = []
        if spans:
            self.emit(Paragraph(spans, self._take_anchors(anchors)))
        else:
            self.carry_anchors.extend(anchors)

    def walk(self, node: Tag) -> None:
        for child in node.children:
            if isinstance(child, _IGNORED_NODES):
                continue
            if isinstance(child, NavigableString):
                self.pending.append(InlineSpan(_source_text(child)))
                continue
            if not isinstance(child, Tag):
                continue
            name = _tag_name(child)
            if name in DROP_TAGS:
                continue
            if name in INLINE_TAGS:
                self.pending_anchors.extend(_anchor_ids(child))
                self._inline_element(child)
                continue
            self.flush()
            if self._block(child, name):
                continue
            self.carry_anchors.extend(_anchor_ids(child))
            self.walk(child)
            self.flush()

    def _inline_element(self, tag: Tag) -> None:
        name = _tag_name(tag)
        if name == "br":
            self.pending.append(InlineSpan("\n"))
            return
        style = STYLE_NONE
        target = None
        if name == "a":
            target = _link_target(tag)
            if target is not None:
                style = STYLE_LINK
        else:
            style = STYLE_TAGS.get(name) or (_css_style(tag) if name == "span" else None) or STYLE_NONE
        _append_inline(tag, style, target, self.pending, self.pending_anchors)

    def _spans_of(self, tag: Tag, *, skip: Iterable[str] = (), style: str = STYLE_NONE) -> tuple[tuple[InlineSpan, ...], list[str]]:
        raw: list[InlineSpan] = []
        anchors = _anchor_ids(tag)
        _append_inline(tag, style, None, raw, anchors, skip)
        return _finish_spans(raw), anchors

    def _block(self, tag: Tag, name: str) -> bool:
        if name in HEADING_LEVELS:
            spans, anchors = self._spans_of(tag)
            if spans:
                self.emit(Heading(HEADING_LEVELS[name], spans, self._take_anchors(anchors)))
            else:
                self.carry_anchors.extend(anchors)
            return True
        if name == "p":
            image = tag.find("img")
            if isinstance(image, Tag) and not clean_text(tag.get_text(), keep_newlines=False).strip():
                anchors = [*_anchor_ids(tag), *_anchor_ids(image)]
                self.emit(ImagePlaceholder(_image_label(image) or "Image", self._take_anchors(anchors)))
                return True
            spans, anchors = self._spans_of(tag)
            if spans:
                self.emit(Paragraph(spans, self._take_anchors(anchors)))
            else:
                self.carry_anchors.extend(anchors)
            return True
        if name in ("blockquote", "aside"):
            self._quote(tag)
            return True
        if name in _LIST_TAGS:
            self._list(tag, 0)
            return True
        if name == "dl":
            self._definition_list(tag)
            return True
        if name == "pre":
            self._code(tag)
            return True
        if name == "img":
            self.emit(ImagePlaceholder(_image_label(tag) or "Image", self._take_anchors(_anchor_ids(tag))))
            return True
        if name == "svg":
            title = tag.find("title")
            label = clean_text(title.get_text(), keep_newlines=False).strip() if isinstance(title, Tag) else ""
            self.emit(ImagePlaceholder(label or "Image", self._take_anchors(_anchor_ids(tag))))
            return True
        if name == "figure":
            return self._figure(tag)
        if name == "table":
            self._table(tag)
            return True
        if name == "hr":
            return True
        return False

    def _quote(self, tag: Tag) -> None:
        inner = _BlockCollector()
        inner.carry_anchors.extend([*self.carry_anchors, *_anchor_ids(tag)])
        self.carry_anchors = []
        inner.walk(tag)
        inner.flush()
        for block in inner.blocks:
            if isinstance(block, Paragraph):
                block = Quote(block.spans, block.anchors)
            self.emit(block)
        self.carry_anchors.extend(inner.carry_anchors)

    def _list(self, tag: Tag, depth: int) -> None:
        ordered = _tag_name(tag) == "ol"
        ordinal = _parse_int(_attr(tag, "start"), 1)
        self.carry_anchors.extend(_anchor_ids(tag))
        for item in tag.children:
            if not isinstance(item, Tag) or _tag_name(item) != "li":
                continue
            if ordered:
                ordinal = _parse_int(_attr(item, "value"), ordinal)
            spans, anchors = self._spans_of(item, skip=_LIST_TAGS)
            if spans:
                self.emit(ListItem(depth, ordinal if ordered else None, spans, self._take_anchors(anchors)))
            else:
                self.carry_anchors.extend(anchors)
            for nested in _nested_lists(item):
                self._list(nested, depth + 1)
            if ordered:
                ordinal += 1

    def _definition_list(self, tag: Tag) -> None:
        term: tuple[InlineSpan, ...] = ()
        self.carry_anchors.extend(_anchor_ids(tag))
        for child in tag.children:
            if not isinstance(child, Tag):
                continue
            name = _tag_name(child)
            if name == "dt":
                term, anchors = self._spans_of(child, style=STYLE_BOLD)
                self.carry_anchors.extend(anchors)
            elif name == "dd":
                definition, anchors = self._spans_of(child)
                if not definition:
                    continue
                spans = definition
                if term:
                    spans = merge_spans([*term, InlineSpan(": "), *definition])
                    term = ()
                self.emit(ListItem(0, None, spans, self._take_anchors(anchors)))

    def _code(self, tag: Tag) -> None:
        code = tag.find("code")
        language = None
        for source in (code, tag):
            if not isinstance(source, Tag):
                continue
            classes = _classes(source)
            for cls in classes:
                if cls.startswith("language-") or cls.startswith("lang-"):
                    language = cls.split("-", 1)[1] or None
                    break
            if language is None and source is code and len(classes) == 1:
                language = classes[0]
            if language:
                break
        for br in tag.find_all("br"):
            br.replace_with("\n")
        raw = (code if isinstance(code, Tag) else tag).get_text()
        lines = [
            clean_text(line.expandtabs(4), keep_newlines=False, collapse=False).rstrip()
            for line in raw.replace("\r\n", "\n").replace("\r", "\n").split("\n")
        ]
        while lines and not lines[0].strip():
            lines.pop(0)
        while lines and not lines[-1].strip():
            lines.pop()
        anchors = self._take_anchors(_anchor_ids(tag))
        if lines:
            self.emit(CodeBlock(language, tuple(lines), anchors))
        else:
            self.carry_anchors.extend(anchors)

    def _figure(self, tag: Tag) -> bool:
        image = tag.find(["img", "svg"])
        if not isinstance(image, Tag):
            return False
        caption_tag = tag.find("figcaption")
        caption = ""
        if isinstance(caption_tag, Tag):
            spans, _ = self._spans_of(caption_tag)
            caption = "".join(span.text for span in spans).replace("\n", " ")
        label = caption or _image_label(image) or "Image"
        self.emit(ImagePlaceholder(label, self._take_anchors([*_anchor_ids(tag), *_anchor_ids(image)])))
        return True

    def _table(self, tag: Tag) -> None:
        self.carry_anchors.extend(_anchor_ids(tag))
        rows = tag.find_all("tr")
        emitted = False
        for row in rows:
            raw: list[InlineSpan] = []
            anchors: list[str] = _anchor_ids(row)
            parts: list[tuple[InlineSpan, ...]] = []
            for cell in row.find_all(["td", "th"], recursive=False):
                style = STYLE_BOLD if _tag_name(cell) == "th" else STYLE_NONE
                cell_raw: list[InlineSpan] = []
                anchors.extend(_anchor_ids(cell))
                _append_inline(cell, style, None, cell_raw, anchors, separator=" ")
                spans = _finish_spans(cell_raw)
                if spans:
                    parts.append(spans)
            for idx, spans in enumerate(parts):
                if idx:
                    raw.append(InlineSpan(_TABLE_CELL_SEPARATOR))
                raw.extend(spans)
            spans = merge_spans(raw)
            if spans:
                self.emit(Paragraph(spans, self._take_anchors(anchors)))
                emitted = True
        if not emitted:
            spans, anchors = self._spans_of(tag)
            if spans:
                self.emit(Paragraph(spans, self._take_anchors(anchors)))


def _collect_blocks(soup: BeautifulSoup) -> tuple[list[Block], bool]:
    body = soup.find("body")
    root = body if isinstance(body, Tag) else soup
    collector = _BlockCollector()
    collector.walk(root)
    collector.flush()
    has_text = bool(clean_text(root.get_text(), keep_newlines=False).strip())
    return collector.blocks, has_text


def parse_blocks(markup: str) -> list[Block]:
    """
    Convert chapter markup into an ordered Block list.

    Raises NormalizeError when the markup cannot be parsed or when it carries
    visible text that produced no blocks at all.
    """
    if not isinstance(markup, str):
        raise NormalizeError(f"Chapter markup must be str, got {type(markup).__name__}")
    if not markup.strip():
        return []
    blocks: list[Block] = []
    has_text = False
    for allow_xml in (True, False):
        try:
            soup = _soup_from_html(markup, allow_xml=allow_xml)
            blocks, has_text = _collect_blocks(soup)
        except RecursionError as exc:
            raise NormalizeError("Chapter markup is nested too deeply") from exc
        except Exception as exc:
            raise NormalizeError(f"Unable to parse chapter markup: {exc}") from exc
        if blocks:
            return blocks
    if has_text:
        raise NormalizeError("Chapter markup produced no blocks")
    return blocks


_SKIP_SECTIONS_RE = re.compile(
    r"<(script|style|head|noscript|template)\b.*?</\1\s*>",
    re.IGNORECASE | re.DOTALL,
)
_TAG_RE = re.compile(r"<[^>]*>")
_BREAK_TAG_RE = re.compile(r"<\s*(br|/p|/div|/h[1-6]|/li|/blockquote)\b[^>]*>", re.IGNORECASE)


def fallback_blocks(markup: str) -> list[Block]:
    """Plain-paragraph rendering of markup used when parsing fails."""
    text = _SKIP_SECTIONS_RE.sub(" ", markup)
    text = _BREAK_TAG_RE.sub("\n\n", text)
    text = _TAG_RE.sub(" ", text)
    text = html.unescape(text)
    blocks: list[Block] = []
    for chunk in re.split(r"\n\s*\n", text):
        cleaned = clean_text(chunk, keep_newlines=False).strip()
        if cleaned:
            blocks.append(Paragraph((InlineSpan(cleaned),)))
    return blocks


def normalize_chapter(markup: str) -> list[Block]:
    """Normalize markup, recovering from NormalizeError with plain paragraphs."""
    try:
        return parse_blocks(markup)
    except NormalizeError as exc:
        debug_log(f"normalizer fallback: {exc}")
        return fallback_blocks(markup if isinstance(markup, str) else "")


__all__ = [
    "DROP_TAGS",
    "NormalizeError",
    "fallback_blocks",
    "normalize_chapter",
    "parse_blocks",
]
