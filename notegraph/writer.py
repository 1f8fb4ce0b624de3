"""
Note writing functions for notegraph.

Contains the save target used by the edit buffer and the "create note"
action. Every path is validated against the vault root before it is touched.
"""

from pathlib import Path

import aiofiles
import aiofiles.os
import structlog

from .utils import (
    NoteIOError,
    PathValidationError,
    normalise_rel_path,
    validate_path_within_vault,
    validate_title,
)

logger = structlog.get_logger(__name__)


async def read_note_content(vault_path: Path, rel_path: str) -> str:
    """Read one note file.

    Raises:
        NoteIOError: If the file cannot be read or decoded.
    """
    file_path = validate_path_within_vault(rel_path, vault_path)
    try:
        async with aiofiles.open(file_path, encoding="utf-8") as f:
            return await f.read()
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("note_read_failed", path=rel_path, error=str(e))
        raise NoteIOError(rel_path, str(e)) from e


async def write_note_content(vault_path: Path, rel_path: str, content: str) -> None:
    """Overwrite a note file with *content*.

    The content goes to a temporary file beside the note, which then replaces
    it, so a concurrent reader sees either the old or the new content.

    Raises:
        PathValidationError: If *rel_path* escapes the vault.
        NoteIOError: If the write fails; the note file is left unchanged.
    """
    file_path = validate_path_within_vault(rel_path, vault_path)
    tmp_path = file_path.with_name(file_path.name + ".tmp")
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(tmp_path, mode="w", encoding="utf-8") as f:
            await f.write(content)
        await aiofiles.os.replace(tmp_path, file_path)
    except OSError as e:
        tmp_path.unlink(missing_ok=True)
        logger.error("note_write_failed", path=rel_path, error=str(e))
        raise NoteIOError(rel_path, str(e)) from e
    logger.debug("note_written", path=rel_path, size=len(content))


def new_note_path(name: str, folder: str | None, extension: str) -> str:
    """Vault-relative path for a new note called *name* inside *folder*.

    Raises:
        TitleValidationError: If *name* cannot be used as a file name.
        PathValidationError: If *folder* is not a safe relative path.
    """
    name = validate_title(name)
    if name.lower().endswith(extension.lower()):
        name = name[: -len(extension)]
    if folder:
        if ".." in folder or folder.startswith("/") or (len(folder) > 1 and folder[1] == ":"):
            raise PathValidationError(f"Invalid folder: {folder}")
        folder = normalise_rel_path(folder)
    return f"{folder}/{name}{extension}" if folder else f"{name}{extension}"


async def create_note_file(
    vault_path: Path,
    name: str,
    folder: str | None = None,
    extension: str = ".md",
    content: str | None = None,
) -> str:
    """Create a new note file and return its vault-relative path.

    The default body is a level-one heading with the note name.

    Raises:
        TitleValidationError / PathValidationError: For rejected names or folders.
        FileExistsError: If a note already exists at that path.
        NoteIOError: If the file cannot be written.
    """
    rel_path = new_note_path(name, folder, extension)
    file_path = validate_path_within_vault(rel_path, vault_path)
    if file_path.exists():
        raise FileExistsError(f"File already exists: {rel_path}")

    if content is None:
        stem = rel_path.rsplit("/", 1)[-1][: -len(extension)]
        content = f"# {stem}\n"
    await write_note_content(vault_path, rel_path, content)
    logger.info("note_created", path=rel_path)
    return rel_path
