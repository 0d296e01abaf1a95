from __future__ import annotations

import posixpath
import re
import xml.etree.ElementTree as ET
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol
from urllib.parse import unquote

from bs4 import BeautifulSoup

from .logging_utils import debug_log
from .text import clean_text

HTML_EXTS = (".xhtml", ".html", ".htm")
HTML_MEDIA_TYPES = {"application/xhtml+xml", "text/html"}
NCX_MEDIA_TYPE = "application/x-dtbncx+xml"
_CONTAINER_NS = {"c": "urn:oasis:names:tc:opendocument:xmlns:container"}
_ENCODINGS = ("utf-8", "cp1252", "latin-1")
_HEADING_RE = re.compile(r"<h[1-6]\b[^>]*>(.*?)</h[1-6]\s*>", re.IGNORECASE | re.DOTALL)
_TITLE_RE = re.compile(r"<title\b[^>]*>(.*?)</title\s*>", re.IGNORECASE | re.DOTALL)


class LoadError(RuntimeError):
    """Raised when a chapter or book cannot be read."""


@dataclass(frozen=True, slots=True)
class ChapterRef:
    index: int
    chapter_id: str
    title: str


class DocumentLoader(Protocol):
    def chapters(self) -> list[ChapterRef]: ...

    def fetch(self, chapter_id: str) -> str: ...


def _decode(raw: bytes) -> str:
    if raw.startswith(b"\xef\xbb\xbf"):
        return raw[3:].decode("utf-8", errors="replace")
    if raw.startswith((b"\xff\xfe", b"\xfe\xff")):
        return raw.decode("utf-16", errors="replace")
    for enc in _ENCODINGS:
        try:
            return raw.decode(enc)
        except UnicodeDecodeError:
            continue
    return raw.decode("utf-8", errors="ignore")


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _join(base_file: str, href: str) -> str:
    href = unquote(href.split("#", 1)[0])
    return posixpath.normpath(posixpath.join(posixpath.dirname(base_file), href)).lstrip("/")


def _plain(markup_fragment: str) -> str:
    text = BeautifulSoup(markup_fragment, "html.parser").get_text(" ")
    return clean_text(text, keep_newlines=False).strip()


def _first_heading(markup: str) -> str | None:
    for pattern in (_HEADING_RE, _TITLE_RE):
        match = pattern.search(markup)
        if match:
            title = _plain(match.group(1))
            if title:
                return title
    return None


def _parse_nav(markup: str) -> list[tuple[str, str]]:
    soup = BeautifulSoup(markup, "html.parser")
    navs = [
        nav
        for nav in soup.find_all("nav")
        if "toc" in (nav.get("epub:type") or "").lower() or (nav.get("role") or "").lower() == "doc-toc"
    ] or soup.find_all("nav")
    entries: list[tuple[str, str]] = []
    for nav in navs:
        for anchor in nav.find_all("a"):
            href = anchor.get("href")
            if href:
                entries.append((href, clean_text(anchor.get_text(" "), keep_newlines=False).strip()))
    return entries


def _parse_ncx(xml_text: str) -> list[tuple[str, str]]:
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError:
        return []
    entries: list[tuple[str, str]] = []
    for point in root.iter():
        if _local(point.tag) != "navPoint":
            continue
        label = ""
        src = None
        for child in point:
            name = _local(child.tag)
            if name == "navLabel":
                label = " ".join("".join(child.itertext()).split())
            elif name == "content":
                src = child.attrib.get("src")
        if src:
            entries.append((src, label))
    return entries


@dataclass(slots=True)
class _ManifestItem:
    href: str
    media_type: str
    properties: str


@dataclass(slots=True)
class _Package:
    opf_path: str
    manifest: dict[str, _ManifestItem] = field(default_factory=dict)
    spine: list[str] = field(default_factory=list)
    title: str | None = None


def _find_opf(zf: zipfile.ZipFile) -> str:
    try:
        root = ET.fromstring(_decode(zf.read("META-INF/container.xml")))
    except (KeyError, ET.ParseError):
        root = None
    if root is not None:
        for rootfile in root.findall(".//c:rootfile", _CONTAINER_NS):
            full = rootfile.attrib.get("full-path")
            if full:
                return full
    for name in zf.namelist():
        if name.lower().endswith(".opf"):
            return name
    raise LoadError("OPF package document not found in EPUB")


def _read_package(zf: zipfile.ZipFile) -> _Package:
    opf_path = _find_opf(zf)
    try:
        root = ET.fromstring(_decode(zf.read(opf_path)))
    except KeyError as exc:
        raise LoadError(f"Missing package document: {opf_path}") from exc
    except ET.ParseError as exc:
        raise LoadError(f"Malformed package document {opf_path}: {exc}") from exc
    package = _Package(opf_path)
    for elem in root.iter():
        name = _local(elem.tag)
        if name == "item":
            item_id = elem.attrib.get("id")
            href = elem.attrib.get("href")
            if item_id and href:
                package.manifest[item_id] = _ManifestItem(
                    _join(opf_path, href),
                    (elem.attrib.get("media-type") or "").lower(),
                    (elem.attrib.get("properties") or "").lower(),
                )
        elif name == "itemref":
            idref = elem.attrib.get("idref")
            item = package.manifest.get(idref or "")
            if item is not None and (item.media_type in HTML_MEDIA_TYPES or item.href.lower().endswith(HTML_EXTS)):
                package.spine.append(item.href)
        elif name == "title" and package.title is None:
            text = "".join(elem.itertext()).strip()
            package.title = text or None
    if not package.spine:
        package.spine = [name for name in zf.namelist() if name.lower().endswith(HTML_EXTS)]
    return package


def _toc_titles(zf: zipfile.ZipFile, package: _Package) -> dict[str, str]:
    sources: list[tuple[str, list[tuple[str, str]]]] = []
    for item in package.manifest.values():
        if "nav" in item.properties.split():
            try:
                sources.append((item.href, _parse_nav(_decode(zf.read(item.href)))))
            except KeyError:
                continue
    for item in package.manifest.values():
        if item.media_type == NCX_MEDIA_TYPE:
            try:
                sources.append((item.href, _parse_ncx(_decode(zf.read(item.href)))))
            except KeyError:
                continue
    titles: dict[str, str] = {}
    for base, entries in sources:
        if not entries:
            continue
        for href, title in entries:
            if title:
                titles.setdefault(_join(base, href), title)
        if titles:
            break
    return titles


class EpubLoader:
    """Chapters of an EPUB archive in spine order."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        try:
            with zipfile.ZipFile(self.path) as zf:
                package = _read_package(zf)
                titles = _toc_titles(zf, package)
                refs: list[ChapterRef] = []
                for index, chapter_id in enumerate(package.spine):
                    title = titles.get(chapter_id)
                    if title is None:
                        try:
                            title = _first_heading(_decode(zf.read(chapter_id)))
                        except KeyError:
                            title = None
                    refs.append(ChapterRef(index, chapter_id, title or Path(chapter_id).stem))
        except FileNotFoundError as exc:
            raise LoadError(f"File not found: {self.path}") from exc
        except (zipfile.BadZipFile, OSError) as exc:
            raise LoadError(f"Unable to open EPUB {self.path}: {exc}") from exc
        self.title = package.title or self.path.stem
        self._chapters = refs
        debug_log(f"epub {self.path.name}: {len(refs)} spine chapter(s)")

    def chapters(self) -> list[ChapterRef]:
        return list(self._chapters)

    def fetch(self, chapter_id: str) -> str:
        try:
            with zipfile.ZipFile(self.path) as zf:
                return _decode(zf.read(chapter_id))
        except KeyError as exc:
            raise LoadError(f"Chapter not found in {self.path.name}: {chapter_id}") from exc
        except (zipfile.BadZipFile, OSError) as exc:
            raise LoadError(f"Unable to read {chapter_id} from {self.path}: {exc}") from exc


class HtmlFileLoader:
    """A single HTML or XHTML file served as one chapter."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        markup = self._read()
        self.title = _first_heading(markup) or self.path.stem
        self._chapters = [ChapterRef(0, self.path.name, self.title)]

    def _read(self) -> str:
        try:
            return _decode(self.path.read_bytes())
        except FileNotFoundError as exc:
            raise LoadError(f"File not found: {self.path}") from exc
        except OSError as exc:
            raise LoadError(f"Unable to read {self.path}: {exc}") from exc

    def chapters(self) -> list[ChapterRef]:
        return list(self._chapters)

    def fetch(self, chapter_id: str) -> str:
        if chapter_id != self.path.name:
            raise LoadError(f"Unknown chapter: {chapter_id}")
        return self._read()


def open_loader(path: str | Path) -> EpubLoader | HtmlFileLoader:
    target = Path(path).expanduser()
    if not target.exists():
        raise LoadError(f"File not found: {target}")
    suffix = target.suffix.lower()
    if suffix == ".epub":
        return EpubLoader(target)
    if suffix in HTML_EXTS:
        return HtmlFileLoader(target)
    raise LoadError(f"Unsupported input (expected .epub or HTML): {target}")


__all__ = [
    "ChapterRef",
    "DocumentLoader",
    "EpubLoader",
    "HTML_EXTS",
    "HtmlFileLoader",
    "LoadError",
    "open_loader",
]
