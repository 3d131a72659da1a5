"""File-name sanitising and anchor slugs."""

import re
import unicodedata

_ILLEGAL = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_WHITESPACE = re.compile(r"\s+")
_SLUG_DROP = re.compile(r"[^\w\- ]", re.UNICODE)

MAX_FILE_NAME = 200
FALLBACK_FILE_NAME = "export"


def sanitize_file_name(name: str) -> str:
    """Make a user-supplied name safe to use as a file name.

    Path separators and characters Windows refuses are replaced with ``_``,
    whitespace is collapsed, and leading/trailing dots and spaces removed.
    """
    cleaned = _ILLEGAL.sub("_", name)
    cleaned = _WHITESPACE.sub(" ", cleaned).strip(" .")
    if len(cleaned) > MAX_FILE_NAME:
        cleaned = cleaned[:MAX_FILE_NAME].rstrip(" .")
    return cleaned or FALLBACK_FILE_NAME


def ensure_extension(name: str, extension: str) -> str:
    """Append ``extension`` unless the name already ends with it."""
    if name.lower().endswith(extension.lower()):
        return name
    return f"{name}{extension}"


def slugify(value: str) -> str:
    """GitHub-style heading anchor ("The Long Road!" -> "the-long-road")."""
    value = unicodedata.normalize("NFKC", value).strip().lower()
    value = _SLUG_DROP.sub("", value)
    return value.replace(" ", "-")


def base_title_from_file_name(file_name: str) -> str:
    """Title for implicit chapters: the file name without directory or extension."""
    stem = re.split(r"[\\/]", file_name)[-1]
    if "." in stem.strip("."):
        stem = stem.rsplit(".", 1)[0]
    return stem.strip() or "Untitled"
