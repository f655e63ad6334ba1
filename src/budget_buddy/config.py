"""
Configuration for budget-buddy.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CHAT_DB = Path("~/Library/Messages/chat.db")

# Environment overrides applied on top of the YAML file
ENV_POLL_INTERVAL = "BUDGET_BUDDY_POLL_INTERVAL"
ENV_MAX_CONCURRENT = "BUDGET_BUDDY_MAX_CONCURRENT"
ENV_CHAT_DB = "BUDGET_BUDDY_CHAT_DB"


@dataclass
class GeminiConfig:
    """Generative model configuration."""

    model: str = "gemini-flash-latest"
    api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    api_key: str | None = None
    api_key_env: str | None = "GEMINI_API_KEY"
    timeout_seconds: float | None = None  # None = wait as long as the model takes

    def get_api_key(self) -> str | None:
        """Get API key from config or environment."""
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        return None


@dataclass
class SearchConfig:
    """Web search provider configuration."""

    api_base: str = "https://api.dedaluslabs.ai"
    search_path: str = "/v1/web/search"
    api_key: str | None = None
    api_key_env: str | None = "DEDALUS_API_KEY"
    max_results: int = 10
    timeout_seconds: float | None = None

    def get_api_key(self) -> str | None:
        """Get API key from config or environment."""
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        return None


@dataclass
class WatcherConfig:
    """iMessage polling configuration."""

    chat_db_path: Path = field(default_factory=lambda: DEFAULT_CHAT_DB)
    poll_interval_seconds: float = 3.0
    unread_only: bool = False
    exclude_own_messages: bool = True
    max_concurrent: int = 5
    debug: bool = False

    def resolved_chat_db(self) -> Path:
        """Chat database path with ``~`` expanded."""
        return self.chat_db_path.expanduser()


@dataclass
class BotConfig:
    """Complete budget-buddy configuration."""

    gemini: GeminiConfig = field(default_factory=GeminiConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BotConfig":
        """Create config from a dictionary (e.g., from YAML)."""
        config = cls()

        if "gemini" in data:
            gm = data["gemini"]
            config.gemini = GeminiConfig(
                model=gm.get("model", config.gemini.model),
                api_base=gm.get("api_base", config.gemini.api_base),
                api_key=gm.get("api_key"),
                api_key_env=gm.get("api_key_env", config.gemini.api_key_env),
                timeout_seconds=gm.get("timeout_seconds"),
            )

        if "search" in data:
            sr = data["search"]
            config.search = SearchConfig(
                api_base=sr.get("api_base", config.search.api_base),
                search_path=sr.get("search_path", config.search.search_path),
                api_key=sr.get("api_key"),
                api_key_env=sr.get("api_key_env", config.search.api_key_env),
                max_results=sr.get("max_results", 10),
                timeout_seconds=sr.get("timeout_seconds"),
            )

        if "watcher" in data:
            w = data["watcher"]
            config.watcher = WatcherConfig(
                chat_db_path=Path(w.get("chat_db_path", DEFAULT_CHAT_DB)),
                poll_interval_seconds=w.get("poll_interval_seconds", 3.0),
                unread_only=w.get("unread_only", False),
                exclude_own_messages=w.get("exclude_own_messages", True),
                max_concurrent=w.get("max_concurrent", 5),
                debug=w.get("debug", False),
            )

        return config

    @classmethod
    def from_yaml(cls, path: Path) -> "BotConfig":
        """Load config from a YAML file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Accept either a bare config or one nested under "budget_buddy"
        return cls.from_dict(data.get("budget_buddy", data))

    def apply_env(self, environ: Mapping[str, str] | None = None) -> "BotConfig":
        """Override watcher settings from environment variables."""
        env = os.environ if environ is None else environ

        if env.get(ENV_POLL_INTERVAL):
            self.watcher.poll_interval_seconds = float(env[ENV_POLL_INTERVAL])
        if env.get(ENV_MAX_CONCURRENT):
            self.watcher.max_concurrent = int(env[ENV_MAX_CONCURRENT])
        if env.get(ENV_CHAT_DB):
            self.watcher.chat_db_path = Path(env[ENV_CHAT_DB])

        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary for logging. Secrets are left out."""
        return {
            "gemini": {
                "model": self.gemini.model,
                "api_base": self.gemini.api_base,
                "api_key_env": self.gemini.api_key_env,
            },
            "search": {
                "api_base": self.search.api_base,
                "search_path": self.search.search_path,
                "api_key_env": self.search.api_key_env,
                "max_results": self.search.max_results,
            },
            "watcher": {
                "chat_db_path": str(self.watcher.chat_db_path),
                "poll_interval_seconds": self.watcher.poll_interval_seconds,
                "unread_only": self.watcher.unread_only,
                "exclude_own_messages": self.watcher.exclude_own_messages,
                "max_concurrent": self.watcher.max_concurrent,
            },
        }
