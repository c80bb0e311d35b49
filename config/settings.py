"""Application settings — all configuration loaded from environment variables.

Usage:
    from config.settings import Settings
    settings = Settings()
    settings.validate()   # raises ValueError if ANTHROPIC_API_KEY is missing

The library database location is read separately from ``DB_PATH`` by
``ideasurge.library`` so that tests can point it at a temp file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _flag(name: str, default: str = "0") -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes"}


@dataclass
class Settings:
    """Centralised application configuration.

    All values are read from environment variables at instantiation time
    so that tests can override them by patching ``os.environ``.
    """

    # ── API Keys ────────────────────────────────────────────────────────────
    anthropic_api_key: str = field(
        default_factory=lambda: os.environ.get("ANTHROPIC_API_KEY", "")
    )

    # ── Flask ───────────────────────────────────────────────────────────────
    debug: bool = field(default_factory=lambda: _flag("FLASK_DEBUG"))
    port: int = field(
        default_factory=lambda: int(os.environ.get("PORT", "5001"))
    )
    log_level: str = field(
        default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO").upper()
    )

    # ── Session & lifecycle ─────────────────────────────────────────────────
    #: JSON file holding the session's idea batch and deep dives; empty keeps
    #: the session in memory only.
    session_path: str = field(
        default_factory=lambda: os.environ.get("SESSION_PATH", "data/session.json")
    )
    #: Recycle un-picked companions as soon as one idea is picked, rather
    #: than on the next search.
    recycle_on_pick: bool = field(default_factory=lambda: _flag("RECYCLE_ON_PICK"))

    # ── Research ────────────────────────────────────────────────────────────
    max_web_searches: int = field(
        default_factory=lambda: int(os.environ.get("MAX_WEB_SEARCHES", "5"))
    )

    # ── AI Models ───────────────────────────────────────────────────────────
    #: Model used for idea search and deep dives (web_search tool enabled).
    research_model: str = field(
        default_factory=lambda: os.environ.get("RESEARCH_MODEL", "claude-haiku-4-5")
    )
    #: Model used for the brainstorm chat.
    chat_model: str = field(
        default_factory=lambda: os.environ.get("CHAT_MODEL", "claude-haiku-4-5")
    )

    def validate(self) -> None:
        """Raise ``ValueError`` if any required setting is missing."""
        if not self.anthropic_api_key:
            raise ValueError(
                "ANTHROPIC_API_KEY environment variable is not set. "
                "Copy .env.example to .env and add your key."
            )
        if self.max_web_searches < 1:
            raise ValueError("MAX_WEB_SEARCHES must be at least 1.")
