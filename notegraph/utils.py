"""
Utility functions and compiled regex patterns for notegraph.

Contains the exception taxonomy, identifier derivation, tokenization,
frontmatter decoding and path validation helpers.
"""

import re
from pathlib import Path, PurePosixPath

import yaml

# Pre-compiled regex patterns for performance
FRONTMATTER_PATTERN = re.compile(r'^---[ \t]*\n(?:(.*?)\n)?---[ \t]*(?:\n|$)', re.DOTALL)
TOKEN_PATTERN = re.compile(r'[^\W_]+')
TITLE_PATTERN = re.compile(r'^[^\\/:*?"<>|#\[\]^]+$')


# ============== Exceptions ==============

class NoteIOError(Exception):
    """Raised when a note file cannot be read or written."""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message


class IndexConsistencyError(Exception):
    """Raised when a vault index invariant is violated."""
    pass


class ModeError(Exception):
    """Raised when an edit buffer transition is not defined for the current mode."""
    pass


class PathValidationError(Exception):
    """Raised when path validation fails."""
    pass


class TitleValidationError(Exception):
    """Raised when title validation fails."""
    pass


# ============== Helper Functions ==============

def normalise_rel_path(rel_path: str | Path) -> str:
    """Return a vault-relative path in POSIX form without leading ``./`` or ``/``."""
    text = str(rel_path).replace("\\", "/")
    parts = [p for p in text.split("/") if p not in ("", ".")]
    return "/".join(parts)


def note_id_for_path(rel_path: str | Path) -> str:
    """Derive the stable note identifier: vault-relative path, extension stripped."""
    posix = PurePosixPath(normalise_rel_path(rel_path))
    if posix.suffix:
        posix = posix.with_suffix("")
    return str(posix)


def basename(note_id: str) -> str:
    """Last path segment of a note identifier."""
    return note_id.rsplit("/", 1)[-1]


def tokenize(text: str) -> list[str]:
    """Lowercase alphanumeric runs of *text*, in order."""
    return [m.group().lower() for m in TOKEN_PATTERN.finditer(text)]


def parse_frontmatter(content: str) -> tuple[dict, str]:
    """Extract YAML frontmatter and body from note content."""
    frontmatter = {}
    body = content

    match = FRONTMATTER_PATTERN.match(content)
    if match:
        try:
            frontmatter = yaml.safe_load(match.group(1) or "") or {}
        except yaml.YAMLError:
            pass
        if not isinstance(frontmatter, dict):
            frontmatter = {}
        body = content[match.end():]

    return frontmatter, body


def frontmatter_tags(frontmatter: dict) -> set[str]:
    """Tags declared in a frontmatter ``tags`` key (list or comma-separated string)."""
    raw = frontmatter.get("tags") or []
    if isinstance(raw, str):
        raw = raw.split(",")
    elif not isinstance(raw, (list, tuple, set)):
        raw = [raw]
    tags = set()
    for item in raw:
        tag = str(item).strip().lstrip("#").rstrip("/").lower()
        if tag:
            tags.add(tag)
    return tags


# ============== Security Validation ==============

def validate_path_within_vault(path_str: str, vault_path: Path) -> Path:
    """Validate that a path is safely within the vault directory.

    Args:
        path_str: The path string to validate (relative path or note identifier)
        vault_path: The vault root path

    Returns:
        The validated absolute Path

    Raises:
        PathValidationError: If the path attempts to escape the vault
    """
    if not path_str or not path_str.strip():
        raise PathValidationError("Path cannot be empty")

    if ".." in path_str:
        raise PathValidationError("Path traversal detected: '..' is not allowed")

    if path_str.startswith("/") or (len(path_str) > 1 and path_str[1] == ":"):
        raise PathValidationError("Absolute paths are not allowed")

    full_path = (vault_path / path_str).resolve()
    vault_resolved = vault_path.resolve()

    try:
        full_path.relative_to(vault_resolved)
    except ValueError:
        raise PathValidationError(f"Path escapes vault directory: {path_str}")

    return full_path


def validate_title(title: str, max_length: int = 200) -> str:
    """Validate and sanitize a note name for the create action.

    Raises:
        TitleValidationError: If the name is empty, too long, or contains
            characters that cannot appear in a file name or a wiki-link.
    """
    if not title or not title.strip():
        raise TitleValidationError("Title cannot be empty")

    title = title.strip()

    if len(title) > max_length:
        raise TitleValidationError(f"Title exceeds maximum length of {max_length} characters")

    if not TITLE_PATTERN.match(title):
        raise TitleValidationError(
            "Title contains invalid characters. Slashes, brackets, '#', '|', '^' "
            "and reserved filename characters are not allowed."
        )

    return title
