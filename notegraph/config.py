"""
Configuration module for notegraph.

Uses pydantic-settings for configuration management with environment variable support.
Environment variables use NOTEGRAPH_ prefix (e.g., NOTEGRAPH_VAULT_PATH).
Settings are read once when a session starts; nothing re-reads them mid-session.
"""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _get_default_vault_path() -> Path:
    """Get default vault path."""
    return Path.home() / "notes"


class Settings(BaseSettings):
    """Application settings with environment variable support.

    Environment variables:
    - NOTEGRAPH_VAULT_PATH: Root directory of the vault
    - NOTEGRAPH_DEFAULT_EXTENSION: Extension of note files (default: md)
    - NOTEGRAPH_SNIPPET_RADIUS: Characters of context around a search match
    - NOTEGRAPH_MAX_SEARCH_RESULTS: Maximum search results
    - NOTEGRAPH_FINDER_LIMIT: Maximum note switcher results
    - NOTEGRAPH_AUTOCOMPLETE_LIMIT: Maximum link autocomplete candidates
    - NOTEGRAPH_UNDO_HISTORY: Undo snapshots kept by the edit buffer
    - NOTEGRAPH_RESOLUTION_RULES: Ordered link resolution rules
    - NOTEGRAPH_SHOW_HIDDEN: Include dot-prefixed files and folders
    """

    vault_path: Path = Field(default_factory=_get_default_vault_path)
    default_extension: str = ".md"
    snippet_radius: int = 40
    max_search_results: int = 50
    finder_limit: int = 20
    autocomplete_limit: int = 10
    undo_history: int = 100
    resolution_rules: tuple[str, ...] = ("exact_path", "path_ci", "title_ci")
    show_hidden: bool = False

    model_config = SettingsConfigDict(env_prefix="NOTEGRAPH_")

    @field_validator("default_extension")
    @classmethod
    def _normalise_extension(cls, value: str) -> str:
        value = value.strip()
        if not value:
            return ".md"
        return value if value.startswith(".") else f".{value}"


# Global settings instance
settings = Settings()
