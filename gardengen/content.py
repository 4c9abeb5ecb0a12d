from __future__ import annotations

import datetime as dt
import html as html_lib
import posixpath
import re
from typing import Callable, Optional

import yaml

from .utils import as_utc

LIST_MARKER_RE = re.compile(r"^(?P<indent>[ \t]*)(?:[-+*]|\d+[.)])\s+")
FENCE_RE = re.compile(r"^(?P<indent>[ \t]*)(`{3,}|~{3,})")
DOUBLE_QUOTE_RE = re.compile(r"^(?P<indent>[ \t]*)>>(?!>)(?P<rest>.*)$")
CJK_RE = re.compile(r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uac00-\ud7af]")
WORD_RE = re.compile(r"[A-Za-z0-9]+(?:'[A-Za-z0-9]+)?")
TAG_RE = re.compile(r"<[^>]+>")
WHITESPACE_RE = re.compile(r"\s+")
MARKDOWN_EXTENSIONS = (".md", ".markdown")


class FrontMatterError(ValueError):
    pass


def slugify_segment(segment: str) -> str:
    segment = segment.strip()
    segment = WHITESPACE_RE.sub("-", segment)
    segment = segment.replace("&", "-and-").replace("%", "-percent")
    segment = segment.replace("?", "").replace("#", "")
    return segment


def slugify_path(path: str) -> str:
    """Output slug for a source-relative path.

    Markdown extensions are dropped, every other extension is kept so assets
    keep their type. Case is preserved.
    """
    path = path.replace("\\", "/").strip("/")
    stem, ext = posixpath.splitext(path)
    if ext.lower() in MARKDOWN_EXTENSIONS:
        path = stem
    segments = [slugify_segment(segment) for segment in path.split("/") if segment.strip()]
    return "/".join(segment for segment in segments if segment)


def is_markdown(path: str) -> bool:
    return posixpath.splitext(path)[1].lower() in MARKDOWN_EXTENSIONS


def has_dot_segments(path: str) -> bool:
    return any(segment.strip() in {".", ".."} for segment in path.replace("\\", "/").split("/"))


def parse_list(value: str) -> list[str]:
    value = value.strip()
    if value.startswith("[") and value.endswith("]"):
        inner = value[1:-1]
        items = [item.strip().strip("'\"") for item in inner.split(",")]
    else:
        items = [item.strip() for item in value.split(",")]
    return [item for item in items if item]


def coerce_list(value: object) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    return parse_list(str(value))


def parse_front_matter(text: str) -> tuple[dict, str]:
    """Split ``---`` delimited YAML frontmatter from the body.

    Raises FrontMatterError when the block is present but is not a YAML
    mapping.
    """
    clean_text = text.lstrip("\ufeff")
    lines = clean_text.splitlines()
    if not lines or lines[0].strip() != "---":
        return {}, clean_text

    end = None
    for i in range(1, len(lines)):
        if lines[i].strip() in {"---", "..."}:
            end = i
            break
    if end is None:
        return {}, clean_text

    block = "\n".join(lines[1:end])
    try:
        meta = yaml.safe_load(block)
    except yaml.YAMLError as exc:
        raise FrontMatterError(f"invalid frontmatter: {exc}") from exc
    if meta is None:
        meta = {}
    if not isinstance(meta, dict):
        raise FrontMatterError("frontmatter must be a mapping")
    meta = {str(key): value for key, value in meta.items()}
    body = "\n".join(lines[end + 1 :])
    return meta, body


def extract_title(meta: dict, body: str, fallback: str = "Untitled") -> tuple[str, str]:
    if meta.get("title"):
        return str(meta["title"]), body
    lines = body.splitlines()
    for i, line in enumerate(lines):
        stripped = line.strip()
        if stripped.startswith("# "):
            title = stripped[2:].strip() or fallback
            new_body = "\n".join(lines[i + 1 :]).lstrip()
            return title, new_body
        if stripped:
            break
    return fallback, body


def coerce_date(value: object) -> Optional[dt.datetime]:
    """Best effort conversion of a frontmatter value to an aware datetime."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, dt.datetime):
        return as_utc(value)
    if isinstance(value, dt.date):
        return dt.datetime.combine(value, dt.time(), tzinfo=dt.timezone.utc)
    if isinstance(value, (int, float)):
        return dt.datetime.fromtimestamp(value, tz=dt.timezone.utc)
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(dt.datetime.fromisoformat(text))
    except ValueError:
        pass
    try:
        return dt.datetime.combine(dt.date.fromisoformat(text), dt.time(), tzinfo=dt.timezone.utc)
    except ValueError:
        raise ValueError(f"unrecognised date: {value!r}") from None


def map_outside_fences(text: str, fn: Callable[[str], str]) -> str:
    """Apply ``fn`` to every run of lines that is not inside a code fence."""
    out: list[str] = []
    pending: list[str] = []
    in_fence = False
    fence_marker = ""

    def flush() -> None:
        if pending:
            out.append(fn("\n".join(pending)))
            pending.clear()

    for line in text.splitlines():
        fence_match = FENCE_RE.match(line)
        if fence_match:
            marker = fence_match.group(2)
            if not in_fence:
                flush()
                in_fence = True
                fence_marker = marker
            elif marker == fence_marker:
                in_fence = False
                fence_marker = ""
            out.append(line)
            continue
        if in_fence:
            out.append(line)
        else:
            pending.append(line)
    flush()
    return "\n".join(out)


def normalize_list_spacing(text: str) -> str:
    lines = text.splitlines()
    out: list[str] = []
    in_fence = False
    fence_marker = ""
    for line in lines:
        fence_match = FENCE_RE.match(line)
        if fence_match:
            marker = fence_match.group(2)
            if not in_fence:
                in_fence = True
                fence_marker = marker
            elif marker == fence_marker:
                in_fence = False
                fence_marker = ""
            out.append(line)
            continue
        if in_fence:
            out.append(line)
            continue
        quote_match = DOUBLE_QUOTE_RE.match(line)
        if quote_match:
            rest = quote_match.group("rest").lstrip()
            if rest:
                line = f'{quote_match.group("indent")}> {rest}'
            else:
                line = f'{quote_match.group("indent")}>'
        list_match = LIST_MARKER_RE.match(line)
        if list_match:
            if not list_match.group("indent"):
                if out and out[-1].strip() and not LIST_MARKER_RE.match(out[-1]):
                    out.append("")
        out.append(line)
    return "\n".join(out)


def strip_tags(html_text: str) -> str:
    return TAG_RE.sub("", html_text)


def plain_text(html_text: str) -> str:
    text = html_lib.unescape(strip_tags(html_text))
    return WHITESPACE_RE.sub(" ", text).strip()


def count_words(text: str) -> int:
    text = html_lib.unescape(text)
    cjk_count = len(CJK_RE.findall(text))
    text = CJK_RE.sub(" ", text)
    word_count = len(WORD_RE.findall(text))
    return cjk_count + word_count


def truncate_words(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    cut = text[:limit]
    if " " in cut:
        cut = cut.rsplit(" ", 1)[0]
    return cut.rstrip(" ,;:.") + "..."
