"""
Pytest configuration and fixtures for notegraph tests.
"""

import pytest
from pathlib import Path


@pytest.fixture
def temp_vault(tmp_path: Path):
    """Create a temporary vault with test notes."""
    vault_path = tmp_path / "vault"
    vault_path.mkdir()

    # Create folder structure
    (vault_path / "Concepts").mkdir()
    (vault_path / "Sessions").mkdir()
    (vault_path / "References").mkdir()
    (vault_path / ".trash").mkdir()

    # Note 1: Concept with frontmatter tags and an inline hierarchical tag
    (vault_path / "Concepts" / "Python.md").write_text("""---
title: Python
tags:
  - programming
  - language
---

# Python

Python is a programming language. #lang/python

See also [[JavaScript]] for comparison.
""", encoding="utf-8")

    # Note 2: Another concept with one good and one broken link
    (vault_path / "Concepts" / "JavaScript.md").write_text("""# JavaScript

JavaScript is a web programming language. #lang/js

It links to [[Python]] and [[Docker]].
""", encoding="utf-8")

    # Note 3: Session note linking by path, case-insensitively
    (vault_path / "Sessions" / "2024-01-20 DevSetup.md").write_text("""# Development Setup

Today we configured Python and Docker for development.
The setup includes [[Python]] and [[concepts/javascript]]. #devops
""", encoding="utf-8")

    # Note 4: Reference note whose title differs from its file name
    (vault_path / "References" / "Docker.md").write_text("""# Docker Reference

Docker is a containerization platform. #devops/containers

Related: [[Python|the Python language]], [[Kubernetes]]
""", encoding="utf-8")

    # Note 5: Hidden folder (skipped by default)
    (vault_path / ".trash" / "Old.md").write_text("# Old\n\n[[Python]]\n", encoding="utf-8")

    # Note 6: Note without frontmatter or heading
    (vault_path / "no_heading.md").write_text("""Just plain markdown content.
No heading, so the title falls back to the file name.
""", encoding="utf-8")

    # Note 7: Note with invalid frontmatter
    (vault_path / "invalid_frontmatter.md").write_text("""---
title: [invalid yaml
tags: not-a-list
---

This note has invalid YAML frontmatter.
""", encoding="utf-8")

    # Not a note: wrong extension
    (vault_path / "image.png").write_bytes(b"\x89PNG")

    yield vault_path


@pytest.fixture
def test_settings(temp_vault):
    """Settings pointing at the temp vault."""
    from notegraph.config import Settings
    return Settings(vault_path=temp_vault)


@pytest.fixture
async def session(test_settings):
    """A VaultSession over the temp vault with its initial scan completed."""
    from notegraph.session import VaultSession
    vault_session = VaultSession(test_settings)
    await vault_session.scan()
    return vault_session


@pytest.fixture
def make_index():
    """Build a VaultIndex from a {path: content} mapping."""
    from notegraph.index import VaultIndex
    from notegraph.models import NoteFile

    def _make(files: dict[str, str], **kwargs) -> VaultIndex:
        index = VaultIndex(**kwargs)
        index.build(NoteFile(path=path, content=content) for path, content in files.items())
        return index

    return _make
