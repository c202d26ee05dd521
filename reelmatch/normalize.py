"""Title normalization for matching noisy source titles."""

from __future__ import annotations

import re
import unicodedata
from datetime import datetime, timezone
from typing import Any

VIDEO_EXTENSIONS = (
    "3gp",
    "avi",
    "divx",
    "flv",
    "m4v",
    "mkv",
    "mov",
    "mp4",
    "mpeg",
    "mpg",
    "ogv",
    "webm",
    "wmv",
)

_EXTENSION = re.compile(r"\.(?:" + "|".join(VIDEO_EXTENSIONS) + r")\s*$", re.IGNORECASE)
_LEADING_YEAR = re.compile(r"^(?:18|19|20)\d{2}(?:\s*[-–—|]\s*|\s+)(?=\S)")
_POSSESSIVE = re.compile(r"^[^\"“”]+['’]s\s*[\"“]([^\"“”]+)[\"”].*$")
_PIPE_PROMO = re.compile(
    r"\s*\|\s*(?:war|romantic|drama|comedy|horror|thriller|action|sci-fi|science fiction|spy|full|free"
    r"|hd|4k|movie|film|based on|with|by|dir)\b.*$",
    re.IGNORECASE,
)
_CREDIT_PAREN = re.compile(
    r"\s*\([^()]*\b(?:starring|with|feat|featuring|dir|directed by|german|french|spanish|italian|russian"
    r"|full movie|full film)\b[^()]*\)",
    re.IGNORECASE,
)
_NAME = r"[A-Z][\w.'’-]*(?:\s+[A-Z][\w.'’-]*)*"
_NAME_LIST_PAREN = re.compile(r"\s*\(\s*" + _NAME + r"(?:\s*(?:,|&|\band\b)\s*" + _NAME + r")+\s*\)")
_YEAR_TAG = re.compile(r"\s*[\(\[]\s*(?:18|19|20)\d{2}\s*[\)\]]")
_BRACKET_TAG = re.compile(r"\s*\[[^\]]*\]")
_WRAP_QUOTES = re.compile(r"^[\"“”](.+)[\"“”]$")
_EDGES = re.compile(r"^[\s\-–—|:;,.]+|[\s\-–—|:;,]+$")
_SPACES = re.compile(r"\s+")


def _clean_once(text: str) -> str:
    cleaned = text.replace("_", " ")
    cleaned = _EXTENSION.sub("", cleaned)
    cleaned = _POSSESSIVE.sub(r"\1", cleaned)
    cleaned = _LEADING_YEAR.sub("", cleaned)
    cleaned = _PIPE_PROMO.sub("", cleaned)
    cleaned = _CREDIT_PAREN.sub("", cleaned)
    cleaned = _NAME_LIST_PAREN.sub("", cleaned)
    cleaned = _YEAR_TAG.sub(" ", cleaned)
    cleaned = _BRACKET_TAG.sub(" ", cleaned)
    cleaned = _SPACES.sub(" ", cleaned).strip()
    cleaned = _WRAP_QUOTES.sub(r"\1", cleaned)
    return _EDGES.sub("", cleaned)


def normalize(raw: str) -> str:
    """Strip source noise from ``raw`` and return a matchable movie name.

    Cleaning is repeated until nothing changes, so ``normalize`` is
    idempotent. A pass that would empty the title is discarded and the last
    non-empty value is returned.
    """
    if not isinstance(raw, str):
        return ""
    current = raw.strip()
    while True:
        cleaned = _clean_once(current)
        if not cleaned or cleaned == current:
            return current
        current = cleaned


_YEAR_PATTERNS = (
    re.compile(r"\(\s*(\d{4})\s*\)"),
    re.compile(r"\[\s*(\d{4})\s*\]"),
    re.compile(r"\|\s*(\d{4})\b"),
    re.compile(r"\s[-–—]\s*(\d{4})\b"),
    re.compile(r"^(\d{4})(?:\s*[-–—|]\s*|\s+)(?=\S)"),
)


def _plausible_year(year: int) -> bool:
    return 1880 <= year <= datetime.now(timezone.utc).year + 1


def extract_year(raw: str) -> tuple[str, int | None]:
    if not isinstance(raw, str):
        return "", None
    text = raw.strip()
    for pattern in _YEAR_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        year = int(match.group(1))
        if not _plausible_year(year):
            continue
        title = (text[: match.start()] + " " + text[match.end():]).strip()
        title = _EDGES.sub("", _SPACES.sub(" ", title))
        return (title or text), year
    return text, None


def comparable(text: str | None) -> str:
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    cleaned = stripped.lower().replace("&", " and ")
    cleaned = re.sub(r"[^\w\s]", " ", cleaned)
    cleaned = re.sub(r"[_\s]+", " ", cleaned)
    return cleaned.strip()


def clean_channel_title(title: str, channel_id: str | None, rules: list[dict[str, Any]] | None) -> str:
    if not title:
        return ""
    rule = next(
        (r for r in rules or [] if isinstance(r, dict) and channel_id and r.get("channel_id") == channel_id),
        None,
    )
    if not rule:
        return title.strip()
    cleaned = title
    for pattern in rule.get("patterns") or []:
        regex = pattern.get("match")
        if not regex:
            continue
        if "extract" in pattern:
            match = re.search(regex, cleaned)
            if match:
                extracted = (match.group(int(pattern["extract"])) or "").strip()
                if extracted:
                    cleaned = extracted
                    break
            continue
        cleaned = re.sub(regex, pattern.get("replace", ""), cleaned)
    return cleaned.strip() or title.strip()
