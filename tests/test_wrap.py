from __future__ import annotations

import pytest

from folio.blocks import (
    STYLE_BOLD,
    CodeBlock,
    Heading,
    ImagePlaceholder,
    InlineSpan,
    ListItem,
    Paragraph,
    Quote,
    block_spans,
)
from folio.text import split_graphemes
from folio.wrap import MIN_COLUMN_WIDTH, WrappedLine, wrap_blocks

LONG_WORD = "Supercalifragilisticexpialidocious"


def _para(text: str, style: str = "none") -> Paragraph:
    return Paragraph((InlineSpan(text, style),))


def _sample_blocks() -> list:
    return [
        Heading(1, (InlineSpan("Ch.1"),)),
        Paragraph(
            (
                InlineSpan("Reading on a terminal should feel calm; "),
                InlineSpan("emphasis", STYLE_BOLD),
                InlineSpan(" survives re-wrapping, as does café́ and 日本語の文章です。 "),
                InlineSpan(LONG_WORD + " ends here."),
            )
        ),
        ListItem(2, None, (InlineSpan("A nested bullet with enough words to wrap twice over."),)),
        Quote((InlineSpan("Quoted text keeps its rule on every wrapped line of the quote."),)),
        CodeBlock("python", ("print('a fairly long line of code that must be truncated')", "")),
        ImagePlaceholder("cover"),
    ]


def _content_chars(lines: tuple[WrappedLine, ...]) -> int:
    return sum(
        1
        for line in lines
        if line.kind in {"paragraph", "heading", "list_item", "quote"}
        for cell in line.cells
        if not cell.decor and not cell.grapheme.isspace()
        for _ in cell.grapheme
    )


def _span_chars(blocks: list) -> int:
    return sum(
        1 for block in blocks for span in block_spans(block) for ch in span.text if not ch.isspace()
    )


def test_concrete_heading_and_paragraph_scenario() -> None:
    blocks = [Heading(1, (InlineSpan("Ch.1"),)), _para("A short test, with a comma.")]
    lines = wrap_blocks(blocks, 20)
    assert [line.text for line in lines] == ["Ch.1", "", "A short test, with a", "comma.", ""]
    assert lines[1].is_blank
    assert (lines[2].word_start, lines[2].word_end) == (0, 5)
    assert (lines[3].word_start, lines[3].word_end) == (5, 6)
    assert lines[2].block_index == 1
    assert lines[0].kind == "heading"


def test_width_below_minimum_is_rejected() -> None:
    with pytest.raises(ValueError):
        wrap_blocks([_para("x")], MIN_COLUMN_WIDTH - 1)


def test_empty_input_gives_no_lines() -> None:
    assert wrap_blocks([], 40) == ()


def test_wrapping_is_deterministic() -> None:
    blocks = _sample_blocks()
    assert wrap_blocks(blocks, 27, hyphenate=True) == wrap_blocks(blocks, 27, hyphenate=True)


@pytest.mark.parametrize("hyphenate", [False, True])
@pytest.mark.parametrize("width", [20, 23, 31, 40, 72])
def test_width_bound_and_character_conservation(width: int, hyphenate: bool) -> None:
    blocks = _sample_blocks()
    lines = wrap_blocks(blocks, width, hyphenate=hyphenate)
    assert all(line.width <= width for line in lines)
    assert _content_chars(lines) == _span_chars(blocks)


def test_grapheme_clusters_are_never_split() -> None:
    blocks = _sample_blocks()
    for width in (20, 21, 22):
        for line in wrap_blocks(blocks, width):
            for cell in line.cells:
                assert len(split_graphemes(cell.grapheme)) == 1


def test_every_block_is_followed_by_a_blank_line() -> None:
    blocks = _sample_blocks()
    lines = wrap_blocks(blocks, 30)
    blanks = [line for line in lines if line.is_blank]
    assert [line.block_index for line in blanks] == list(range(len(blocks)))
    assert lines[-1].is_blank


def test_long_word_is_hard_split_without_hyphenation() -> None:
    lines = wrap_blocks([_para(LONG_WORD)], 20)
    text_lines = [line for line in lines if not line.is_blank]
    assert [line.text for line in text_lines] == [LONG_WORD[:20], LONG_WORD[20:]]
    assert not any(line.hyphenated for line in text_lines)
    assert text_lines[0].word_start == 0 and text_lines[0].word_end == 1
    assert not text_lines[1].has_words


def test_hyphenation_inserts_decoration_mark() -> None:
    lines = wrap_blocks([_para(LONG_WORD)], 20, hyphenate=True)
    hyphenated = [line for line in lines if line.hyphenated]
    assert hyphenated
    for line in hyphenated:
        assert line.cells[-1].grapheme == "-"
        assert line.cells[-1].decor
    joined = "".join(line.content_text for line in lines)
    assert joined == LONG_WORD


def test_unknown_hyphenation_language_warns() -> None:
    with pytest.warns(RuntimeWarning):
        lines = wrap_blocks([_para(LONG_WORD)], 20, hyphenate=True, language="zz_QQ")
    assert "".join(line.content_text for line in lines) == LONG_WORD


def test_breaks_after_hyphen_inside_words() -> None:
    lines = wrap_blocks([_para("aaaaaaaaaaaaa well-known")], 20)
    rows = [line for line in lines if not line.is_blank]
    assert [line.text for line in rows] == ["aaaaaaaaaaaaa well-", "known"]
    assert not rows[0].hyphenated
    assert (rows[0].word_start, rows[0].word_end) == (0, 2)
    assert not rows[1].has_words


def test_cjk_text_breaks_between_ideographs() -> None:
    text = "日本語の文章はスペースなしで続きますが折り返されます"
    lines = wrap_blocks([_para(text)], 20)
    rows = [line for line in lines if not line.is_blank]
    assert len(rows) > 1
    assert all(line.width <= 20 for line in rows)
    assert "".join(line.text for line in rows) == text
    assert rows[0].has_words and not rows[1].has_words


def test_hard_line_breaks_start_new_rows() -> None:
    lines = wrap_blocks([_para("one\ntwo\n\nthree")], 20)
    assert [line.text for line in lines] == ["one", "two", "", "three", ""]


def test_list_items_use_marker_and_hanging_indent() -> None:
    item = ListItem(1, None, (InlineSpan("Nested item text that wraps around the column"),))
    lines = [line for line in wrap_blocks([item], 20) if not line.is_blank]
    assert lines[0].text.startswith("  • ")
    assert all(line.text.startswith("    ") for line in lines[1:])
    assert all(cell.decor for cell in lines[0].cells[:4])
    ordered = wrap_blocks([ListItem(0, 3, (InlineSpan("third"),))], 20)
    assert ordered[0].text == "3. third"


def test_quotes_carry_a_rule_on_each_line() -> None:
    quote = Quote((InlineSpan("Quoted text keeps its rule on every wrapped line."),))
    lines = [line for line in wrap_blocks([quote], 20) if not line.is_blank]
    assert len(lines) > 1
    assert all(line.text.startswith("│ ") for line in lines)


def test_code_lines_are_truncated_not_wrapped() -> None:
    code = CodeBlock(None, ("x" * 30, "short", "\tindented"))
    lines = wrap_blocks([code], 20)
    assert lines[0].text == "x" * 19 + "…"
    assert lines[0].cells[-1].decor
    assert lines[1].text == "short"
    assert lines[2].text == "    indented"
    assert all(not line.has_words for line in lines)


def test_image_placeholder_is_a_single_line() -> None:
    lines = wrap_blocks([ImagePlaceholder("A very long description of a picture")], 20)
    assert len(lines) == 2
    assert lines[0].text.startswith("[Image: A very")
    assert lines[0].text.endswith("…")
    assert lines[0].width == 20
    short = wrap_blocks([ImagePlaceholder("map")], 20)
    assert short[0].text == "[Image: map]"
