from __future__ import annotations

import argparse
import sys
import time
import tomllib
from dataclasses import replace
from importlib import metadata
from pathlib import Path

from rich.cells import cell_len
from rich.console import Console, Group
from rich.live import Live
from rich.table import Table
from rich.text import Text

from .blocks import STYLE_BOLD, STYLE_ITALIC, STYLE_LINK, STYLE_UNDERLINE
from .config import ConfigError, ReaderConfig, load_config
from .loader import LoadError, open_loader
from .logging_utils import set_debug_logging
from .rsvp import STATUS_PLAYING, RsvpFrame
from .session import PANE_GUTTER, ReadingSession
from .words import orp_index
from .wrap import WrappedLine

_CELL_STYLES = {
    STYLE_BOLD: "bold",
    STYLE_ITALIC: "italic",
    STYLE_UNDERLINE: "underline",
    STYLE_LINK: "underline cyan",
}
_PIVOT_COLUMN = 12
_TICK_SECONDS = 0.01


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("folio")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _add_version_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"folio {__version__}",
    )


def _add_book_arguments(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("book", help="Path to an .epub or an HTML/XHTML file")
    ap.add_argument(
        "--chapter",
        type=int,
        default=1,
        help="Chapter number, 1-based (default: 1)",
    )
    ap.add_argument(
        "--page",
        type=int,
        default=1,
        help="Page number within the chapter, 1-based (default: 1)",
    )
    ap.add_argument("--width", type=int, help="Column width in cells (default from config: 72)")
    ap.add_argument("--height", type=int, help="Lines per page (default from config: 24)")
    ap.add_argument(
        "--hyphenate",
        action="store_true",
        help="Hyphenate long words with the configured pattern language",
    )
    ap.add_argument("--config", help="Path to a TOML config file ([folio] table)")
    ap.add_argument("--debug", action="store_true", help="Print debug details to stderr")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Paginated terminal reader for EPUB and HTML. Use `folio rsvp` for word-at-a-time playback.",
    )
    _add_version_flag(ap)
    _add_book_arguments(ap)
    ap.add_argument(
        "--two-pane",
        action="store_true",
        help="Show two pages side by side",
    )
    ap.add_argument(
        "--find",
        metavar="TEXT",
        help="Open at the first page at or after --page whose text contains TEXT (case-insensitive)",
    )
    return ap


def build_rsvp_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Play a chapter one word at a time, starting at the given page.",
    )
    _add_version_flag(ap)
    _add_book_arguments(ap)
    ap.add_argument("--wpm", type=int, help="Words per minute, 100-1000 (default from config: 250)")
    ap.add_argument(
        "--count",
        type=int,
        help="Stop after this many words (default: play to the end of the chapter)",
    )
    return ap


def build_words_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="List the RSVP word stream of a chapter with pause classes and pivots.",
    )
    _add_version_flag(ap)
    ap.add_argument("book", help="Path to an .epub or an HTML/XHTML file")
    ap.add_argument("--chapter", type=int, default=1, help="Chapter number, 1-based (default: 1)")
    ap.add_argument("--config", help="Path to a TOML config file ([folio] table)")
    ap.add_argument("--debug", action="store_true", help="Print debug details to stderr")
    return ap


def _config_from_args(args: argparse.Namespace) -> ReaderConfig:
    try:
        config = load_config(getattr(args, "config", None))
    except ConfigError as exc:
        raise SystemExit(str(exc)) from exc
    updates: dict[str, object] = {}
    if getattr(args, "width", None):
        updates["width"] = args.width
    if getattr(args, "height", None):
        updates["height"] = args.height
    if getattr(args, "hyphenate", False):
        updates["hyphenate"] = True
    if getattr(args, "two_pane", False):
        updates["two_pane"] = True
    if getattr(args, "wpm", None):
        updates["wpm"] = args.wpm
    return replace(config, **updates).clamped()


def _open_session(args: argparse.Namespace, config: ReaderConfig) -> ReadingSession:
    set_debug_logging(bool(getattr(args, "debug", False)))
    try:
        loader = open_loader(args.book)
        session = ReadingSession(loader, config)
    except LoadError as exc:
        raise SystemExit(str(exc)) from exc
    if session.chapter_count == 0:
        session.close()
        raise SystemExit(f"No chapters found in {args.book}")
    try:
        session.open_chapter(args.chapter - 1)
    except LoadError as exc:
        session.close()
        raise SystemExit(str(exc)) from exc
    return session


def render_line(line: WrappedLine) -> Text:
    text = Text(no_wrap=True, overflow="crop")
    heading = line.kind == "heading"
    for cell in line.cells:
        style = "dim" if cell.decor else _CELL_STYLES.get(cell.style, "")
        if heading and not cell.decor:
            style = f"bold {style}".strip()
        if cell.style == STYLE_LINK and cell.target and "://" in cell.target:
            style = f"{style} link {cell.target}"
        text.append(cell.grapheme, style=style or None)
    return text


def _render_pane(session: ReadingSession, pane: int) -> Text:
    lines = session.page_lines(pane)
    body = Text("\n").join(render_line(line) for line in lines)
    padding = session.panes[pane].height - len(lines)
    if padding > 0:
        body.append("\n" * padding)
    return body


def _render_page(session: ReadingSession) -> Group:
    ref = session.chapter
    pages = session.pages(0)
    header = Text(
        f"{ref.title if ref else ''}  ·  chapter {session.chapter_index + 1}/{session.chapter_count}"
        f"  ·  page {session.current_page_index(0) + 1}/{max(1, len(pages))}",
        style="dim",
    )
    if len(session.panes) == 1:
        return Group(header, _render_pane(session, 0))
    grid = Table.grid(padding=(0, PANE_GUTTER))
    for pane in session.panes:
        grid.add_column(width=pane.width, no_wrap=True)
    grid.add_row(*(_render_pane(session, idx) for idx in range(len(session.panes))))
    return Group(header, grid)


def _run_read(args: argparse.Namespace) -> int:
    config = _config_from_args(args)
    console = Console(highlight=False)
    with _open_session(args, config) as session:
        session.go_to_page(args.page - 1, 0)
        if args.find and session.search_forward(args.find) is None:
            console.print(f"No match for {args.find!r} in this chapter", style="yellow")
        console.print(_render_page(session))
    return 0


def render_frame(frame: RsvpFrame) -> Group:
    pad = max(0, _PIVOT_COLUMN - cell_len(frame.left))
    word = Text.assemble(
        " " * pad,
        frame.left,
        (frame.pivot, "bold red"),
        frame.right,
    )
    guide = Text(" " * _PIVOT_COLUMN + "▼", style="dim")
    status = Text(
        f"{frame.wpm} wpm  ·  {frame.index + 1 if frame.total else 0}/{frame.total}"
        f"  ·  {frame.progress:.0%}  ·  {frame.status}",
        style="dim",
    )
    return Group(guide, word, status)


def _run_rsvp(args: argparse.Namespace) -> int:
    config = _config_from_args(args)
    console = Console(highlight=False)
    with _open_session(args, config) as session:
        session.go_to_page(args.page - 1, 0)
        transition = session.enter_rsvp()
        if not transition.entered:
            console.print(transition.message or "nothing to play")
            return 0
        remaining = args.count if args.count and args.count > 0 else None
        session.player.play()
        shown = session.player.index
        with Live(render_frame(session.rsvp_frame()), console=console, auto_refresh=False) as live:
            while session.player.status == STATUS_PLAYING:
                if session.tick():
                    shown = session.player.index
                    live.update(render_frame(session.rsvp_frame()), refresh=True)
                    if remaining is not None:
                        remaining -= 1
                        if remaining <= 0:
                            break
                time.sleep(_TICK_SECONDS)
        session.player.pause()
        result = session.exit_rsvp()
        console.print(
            f"Stopped at word {shown + 1}; page {result.page_index + 1} of chapter {result.chapter_index + 1}.",
            style="dim",
        )
    return 0


def _run_words(args: argparse.Namespace) -> int:
    config = _config_from_args(args)
    console = Console(highlight=False)
    with _open_session(args, config) as session:
        transition = session.enter_rsvp()
        if not transition.entered:
            console.print(transition.message or "nothing to play")
            return 0
        table = Table(show_header=True, header_style="bold", box=None)
        table.add_column("#", justify="right")
        table.add_column("word")
        table.add_column("pause")
        table.add_column("pivot", justify="right")
        for idx, token in enumerate(session.player.tokens):
            table.add_row(str(idx + 1), token.text, token.pause, str(orp_index(token.text)))
        console.print(table)
        session.exit_rsvp()
    return 0


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] == "rsvp":
        rsvp_args = build_rsvp_parser().parse_args(argv[1:])
        return _run_rsvp(rsvp_args)
    if argv and argv[0] == "words":
        words_args = build_words_parser().parse_args(argv[1:])
        return _run_words(words_args)

    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    args = parser.parse_args(argv)
    return _run_read(args)


if __name__ == "__main__":
    raise SystemExit(main())
