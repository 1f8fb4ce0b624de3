"""
Tests for the vault session: scanning, collaborator events and the save path.
"""

import os

import pytest

PYTHON = "Concepts/Python"
JAVASCRIPT = "Concepts/JavaScript"
DEVSETUP = "Sessions/2024-01-20 DevSetup"
DOCKER = "References/Docker"


# ============== Tests for scanning ==============

class TestScan:
    """Tests for the full vault scan."""

    async def test_scan_loads_notes(self, session):
        """Test the scan indexes every visible note file."""
        ids = [note.id for note in session.index.notes()]

        assert ids == [JAVASCRIPT, PYTHON, DOCKER, DEVSETUP, "invalid_frontmatter", "no_heading"]

    async def test_hidden_folders_skipped(self, session):
        """Test dot-prefixed folders are not scanned by default."""
        assert ".trash/Old" not in session.index
        assert session.index.backlinks_of(PYTHON) == [JAVASCRIPT, DOCKER, DEVSETUP]

    async def test_show_hidden(self, temp_vault):
        """Test hidden notes are included when configured."""
        from notegraph.config import Settings
        from notegraph.session import VaultSession

        vault_session = VaultSession(Settings(vault_path=temp_vault, show_hidden=True))
        await vault_session.scan()

        assert ".trash/Old" in vault_session.index

    async def test_resolution_across_vault(self, session):
        """Test title, case-insensitive path and broken links."""
        resolved = {(l.source, l.target): l.resolved for note in session.index.notes() for l in note.links}

        assert resolved[(PYTHON, "JavaScript")] == JAVASCRIPT
        assert resolved[(DEVSETUP, "concepts/javascript")] == JAVASCRIPT
        assert resolved[(JAVASCRIPT, "Docker")] is None
        assert resolved[(DOCKER, "Kubernetes")] is None

    async def test_tags_from_body_and_frontmatter(self, session):
        """Test inline and frontmatter tags both reach the hierarchy."""
        assert session.index.notes_with_tag("lang") == [JAVASCRIPT, PYTHON]
        assert session.index.notes_with_tag("programming") == [PYTHON]
        assert session.index.notes_with_tag("devops") == [DOCKER, DEVSETUP]

    async def test_titles(self, session):
        """Test headings become titles and other notes fall back to the file name."""
        assert session.index.get(DOCKER).title == "Docker Reference"
        assert session.index.get("no_heading").title == "no_heading"
        assert session.index.get("invalid_frontmatter").frontmatter == {}

    async def test_background_scan_swaps_index(self, test_settings):
        """Test readers see the previous index until the scan publishes a new one."""
        from notegraph.session import VaultSession

        vault_session = VaultSession(test_settings)
        previous = vault_session.index
        task = vault_session.start_scan()

        assert len(vault_session.index) == 0

        await task

        assert vault_session.index is not previous
        assert len(vault_session.index) == 6
        vault_session.index.verify()

    @pytest.mark.parametrize("yields", [0, 1, 3])
    async def test_save_during_background_scan(self, session, yields):
        """Test a save made while a rescan runs is in the published index."""
        import asyncio

        task = session.start_scan()
        for _ in range(yields):
            await asyncio.sleep(0)
        await session.save_note("no_heading", "fresh #saved content")
        await task

        assert session.index.get("no_heading").content == "fresh #saved content"
        assert session.index.notes_with_tag("saved") == ["no_heading"]
        session.index.verify()

    async def test_unreadable_file_becomes_status(self, temp_vault, test_settings):
        """Test a file that cannot be decoded is skipped and reported."""
        from notegraph.session import VaultSession

        (temp_vault / "bad.md").write_bytes(b"\xff\xfe\xfa broken")
        vault_session = VaultSession(test_settings)
        await vault_session.scan()

        assert "bad" not in vault_session.index
        assert vault_session.last_status.kind == "io_error"
        assert vault_session.last_status.path == "bad.md"

    async def test_missing_vault(self, tmp_path):
        """Test a vault directory that does not exist scans as empty."""
        from notegraph.config import Settings
        from notegraph.session import VaultSession

        vault_session = VaultSession(Settings(vault_path=tmp_path / "nowhere"))
        await vault_session.scan()

        assert len(vault_session.index) == 0

    async def test_listeners_follow_swap(self, test_settings):
        """Test session listeners keep receiving changes after a scan."""
        from notegraph.models import ChangeKind
        from notegraph.session import VaultSession

        vault_session = VaultSession(test_settings)
        seen = []
        vault_session.subscribe(seen.append)
        await vault_session.scan()
        vault_session.index.update("fresh", "text")

        assert [c.kind for c in seen] == [ChangeKind.BUILT, ChangeKind.UPDATED]


class TestRefresh:
    """Tests for incremental refresh."""

    async def test_refresh_detects_changes(self, session, temp_vault):
        """Test new, modified and deleted files are each applied once."""
        python_file = temp_vault / "Concepts" / "Python.md"
        python_file.write_text("# Python\n\nRewritten zebra.\n", encoding="utf-8")
        later = python_file.stat().st_mtime + 10
        os.utime(python_file, (later, later))
        (temp_vault / "new_note.md").write_text("[[no_heading]]", encoding="utf-8")
        (temp_vault / "no_heading.md").unlink()

        assert await session.refresh() == (1, 1, 1)
        assert [h.note_id for h in session.search("zebra")] == [PYTHON]
        assert "no_heading" not in session.index
        assert session.index.links_of("new_note")[0].broken
        session.index.verify()

    async def test_refresh_unchanged(self, session):
        """Test a refresh with no changes does nothing."""
        revision = session.index.revision

        assert await session.refresh() == (0, 0, 0)
        assert session.index.revision == revision


# ============== Tests for collaborator events ==============

class TestFileEvents:
    """Tests for create, delete, rename and external modification."""

    async def test_deleted_note_breaks_links(self, session, temp_vault):
        """Test deleting a note leaves links to it broken."""
        (temp_vault / "Concepts" / "Python.md").unlink()
        await session.on_deleted("Concepts/Python.md")

        assert session.index.backlinks_of(PYTHON) == []
        assert all(l.broken for l in session.index.links_of(JAVASCRIPT) if l.target == "Python")

    async def test_rename_is_remove_then_add(self, session, temp_vault):
        """Test path links break after a rename while title links follow."""
        (temp_vault / "Concepts" / "JavaScript.md").rename(temp_vault / "Concepts" / "JS.md")
        await session.on_renamed("Concepts/JavaScript.md", "Concepts/JS.md")

        resolved = {l.target: l.resolved for note in session.index.notes() for l in note.links}

        assert JAVASCRIPT not in session.index
        assert resolved["JavaScript"] == "Concepts/JS"
        assert resolved["concepts/javascript"] is None
        session.index.verify()

    async def test_created_note(self, session, temp_vault):
        """Test a new file is indexed and resolves earlier broken links."""
        (temp_vault / "Kubernetes.md").write_text("# Kubernetes\n", encoding="utf-8")
        change = await session.on_created("Kubernetes.md")

        assert change.affected == [DOCKER]
        assert session.index.backlinks_of("Kubernetes") == [DOCKER]

    async def test_reload_note_updates_reading_buffer(self, session, temp_vault):
        """Test an external modification reaches the index and a reading buffer."""
        buffer = await session.open_note("no_heading")
        (temp_vault / "no_heading.md").write_text("changed outside", encoding="utf-8")

        await session.reload_note("no_heading")

        assert session.index.get("no_heading").content == "changed outside"
        assert buffer.text == "changed outside"

    async def test_edit_externally(self, session):
        """Test the external editor round-trip reindexes as one save."""
        def launcher(path):
            path.write_text("# Python\n\nEdited elsewhere with quokka.\n", encoding="utf-8")

        change = await session.edit_externally(PYTHON, launcher)

        assert change.note_id == PYTHON
        assert [h.note_id for h in session.search("quokka")] == [PYTHON]

    async def test_consistency_fault_rebuilds(self, session, temp_vault, monkeypatch):
        """Test an index fault triggers a full rebuild from the file listing."""
        from notegraph.utils import IndexConsistencyError

        def broken_update(*args, **kwargs):
            raise IndexConsistencyError("duplicate identifier")

        faulty = session.index
        monkeypatch.setattr(faulty, "update", broken_update)
        (temp_vault / "extra.md").write_text("extra", encoding="utf-8")

        await session.on_created("extra.md")

        assert session.index is not faulty
        assert "extra" in session.index
        assert session.last_status.kind == "rebuilt"


# ============== Tests for the save path ==============

class TestEditing:
    """Tests for opening, editing and saving notes."""

    async def test_save_reindexes(self, session, temp_vault):
        """Test leaving edit mode writes the file and updates every index."""
        buffer = await session.open_note("no_heading")
        session.start_editing()
        buffer.insert_text("#fresh wombat [[Concepts/Python]]\n")

        assert session.search("wombat") == []

        assert await session.close_editor() is True
        assert "wombat" in (temp_vault / "no_heading.md").read_text(encoding="utf-8")
        assert [h.note_id for h in session.search("wombat")] == ["no_heading"]
        assert session.index.notes_with_tag("fresh") == ["no_heading"]
        assert "no_heading" in session.index.backlinks_of(PYTHON)

    async def test_failed_save_keeps_state(self, session, monkeypatch):
        """Test a write failure keeps the buffer editing and the index unchanged."""
        from notegraph import session as session_module
        from notegraph.buffer import EditMode
        from notegraph.utils import NoteIOError

        async def failing_write(vault_path, rel_path, content):
            raise NoteIOError(rel_path, "read-only file system")

        monkeypatch.setattr(session_module, "write_note_content", failing_write)
        before = session.index.get("no_heading")
        buffer = await session.open_note("no_heading")
        session.start_editing()
        buffer.insert_text("lost? ")

        assert await session.close_editor() is False
        assert isinstance(buffer.mode, EditMode)
        assert session.index.get("no_heading") == before
        assert session.last_status.kind == "io_error"

    async def test_open_note_saves_edits(self, session, temp_vault):
        """Test navigating away saves the open buffer first."""
        buffer = await session.open_note("no_heading")
        session.start_editing()
        buffer.insert_text("kept ")

        other = await session.open_note(PYTHON)

        assert other.note_id == PYTHON
        assert (temp_vault / "no_heading.md").read_text(encoding="utf-8").startswith("kept ")

    async def test_open_unknown_note(self, session):
        """Test opening an unknown note returns None."""
        assert await session.open_note("nope") is None

    async def test_clean_exit_does_not_write(self, session, monkeypatch):
        """Test leaving edit mode without changes skips the write."""
        from notegraph import session as session_module

        async def unexpected_write(*args):
            raise AssertionError("write without edits")

        monkeypatch.setattr(session_module, "write_note_content", unexpected_write)
        await session.open_note(PYTHON)
        session.start_editing()

        assert await session.close_editor() is True

    async def test_autocomplete_candidates(self, session):
        """Test the autocomplete query is matched against saved notes."""
        buffer = await session.open_note("no_heading")
        session.start_editing()
        for ch in "[[javas":
            buffer.insert_char(ch)

        matches = session.refresh_autocomplete()
        buffer.accept()

        assert matches[0].note_id == JAVASCRIPT
        assert buffer.lines[0].startswith(f"[[{JAVASCRIPT}]]")

    async def test_switch_notes(self, session):
        """Test the note switcher matches titles."""
        assert session.switch_notes("dockref")[0].note_id == DOCKER


class TestCreateNote:
    """Tests for the create-note action."""

    async def test_create_note(self, session, temp_vault):
        """Test a created note is written with a heading and indexed."""
        note_id = await session.create_note("Kubernetes", "References")

        assert note_id == "References/Kubernetes"
        assert (temp_vault / "References" / "Kubernetes.md").read_text(encoding="utf-8") == "# Kubernetes\n"
        assert session.index.backlinks_of(note_id) == [DOCKER]

    async def test_create_rejects_bad_names(self, session):
        """Test invalid names and folders are rejected."""
        from notegraph.utils import PathValidationError, TitleValidationError

        with pytest.raises(TitleValidationError):
            await session.create_note("a/b")
        with pytest.raises(TitleValidationError):
            await session.create_note("   ")
        with pytest.raises(PathValidationError):
            await session.create_note("ok", "../outside")

    async def test_create_existing(self, session):
        """Test creating over an existing note fails."""
        with pytest.raises(FileExistsError):
            await session.create_note("Python", "Concepts")
