"""
Configuration management for the ClearMind service.
Secrets and deployment settings come from the environment (.env), tunable
retrieval and agent settings from config.json in the config directory.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

from dotenv import load_dotenv

from clearmind.core.llm import DEFAULT_MODEL
from clearmind.core.retrieval import RetrievalPolicy, SEARCH_POLICY, REFLECT_POLICY, COACH_POLICY, RELATED_POLICY

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DEFAULT_DB_URL = "sqlite:///clearmind.db"


def load_env(dotenv_path: Optional[Union[str, Path]] = None) -> None:
    """Load .env from the project root (or the given path) without overriding the environment."""
    load_dotenv(dotenv_path or PROJECT_ROOT / ".env")


def get_db_url() -> str:
    return os.getenv("DATABASE_URL") or DEFAULT_DB_URL


def get_config_dir() -> Path:
    return Path(os.getenv("CLEARMIND_CONFIG_DIR") or PROJECT_ROOT / "config")


class AppConfig:
    """Manages service configuration stored in config.json."""

    DEFAULTS: Dict[str, Any] = {
        "llm_model": DEFAULT_MODEL,
        "search_min_similarity": SEARCH_POLICY.min_similarity,
        "search_limit": SEARCH_POLICY.limit,
        "rag_min_similarity": REFLECT_POLICY.min_similarity,
        "reflect_limit": REFLECT_POLICY.limit,
        "coach_limit": COACH_POLICY.limit,
        "related_limit": RELATED_POLICY.limit,
        "coach_history_limit": 20,
        "max_context_tokens": 6000,
        "recap_days": 7,
    }

    def __init__(self, config_dir: Union[str, Path, None] = None):
        """
        Initialize AppConfig.

        Args:
            config_dir: Directory holding config.json (default: CLEARMIND_CONFIG_DIR or ./config)
        """
        self.config_dir = Path(config_dir) if config_dir else get_config_dir()
        self.config_file = self.config_dir / "config.json"
        self.data = self._load()

    def _write(self, data: Dict[str, Any]) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, 'w') as f:
            json.dump(data, f, indent=2)
        os.chmod(self.config_file, 0o600)

    def _load(self) -> Dict[str, Any]:
        """Load configuration from file or return defaults. Auto-save missing defaults."""
        defaults = dict(self.DEFAULTS)

        if not self.config_file.exists():
            self._write(defaults)
            return defaults

        try:
            with open(self.config_file, 'r') as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("config root must be an object")
        except (json.JSONDecodeError, ValueError, IOError):
            # corrupted file, start over with defaults
            self._write(defaults)
            return defaults

        missing = [key for key in defaults if key not in data]
        for key in missing:
            data[key] = defaults[key]
        if missing:
            self._write(data)
        return data

    def save(self):
        self._write(self.data)

    def get(self, key: str) -> Any:
        if key not in self.DEFAULTS:
            raise KeyError(f"unknown config key: {key}")
        return getattr(self, key)

    def set(self, key: str, value: Any) -> None:
        """Set a key through its validating property; strings are coerced to the default's type."""
        if key not in self.DEFAULTS:
            raise KeyError(f"unknown config key: {key}")
        default = self.DEFAULTS[key]
        if isinstance(value, str) and not isinstance(default, str):
            try:
                value = float(value) if isinstance(default, float) else int(value)
            except ValueError:
                raise ValueError(f"{key} expects a number, got {value!r}")
        setattr(self, key, value)

    def _set_positive_int(self, key: str, value: int) -> None:
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            raise ValueError(f"{key} must be a positive integer")
        self.data[key] = value
        self.save()

    def _set_similarity(self, key: str, value: float) -> None:
        if not isinstance(value, (int, float)) or isinstance(value, bool) or value < -1 or value > 1:
            raise ValueError(f"{key} must be a float between -1 and 1")
        self.data[key] = float(value)
        self.save()

    @property
    def llm_model(self) -> str:
        return self.data.get("llm_model", DEFAULT_MODEL)

    @llm_model.setter
    def llm_model(self, value: str):
        if not value or not str(value).strip():
            raise ValueError("llm_model must not be empty")
        self.data["llm_model"] = str(value).strip()
        self.save()

    @property
    def search_min_similarity(self) -> float:
        return self.data.get("search_min_similarity", SEARCH_POLICY.min_similarity)

    @search_min_similarity.setter
    def search_min_similarity(self, value: float):
        self._set_similarity("search_min_similarity", value)

    @property
    def search_limit(self) -> int:
        return self.data.get("search_limit", SEARCH_POLICY.limit)

    @search_limit.setter
    def search_limit(self, value: int):
        self._set_positive_int("search_limit", value)

    @property
    def rag_min_similarity(self) -> float:
        return self.data.get("rag_min_similarity", REFLECT_POLICY.min_similarity)

    @rag_min_similarity.setter
    def rag_min_similarity(self, value: float):
        self._set_similarity("rag_min_similarity", value)

    @property
    def reflect_limit(self) -> int:
        return self.data.get("reflect_limit", REFLECT_POLICY.limit)

    @reflect_limit.setter
    def reflect_limit(self, value: int):
        self._set_positive_int("reflect_limit", value)

    @property
    def coach_limit(self) -> int:
        return self.data.get("coach_limit", COACH_POLICY.limit)

    @coach_limit.setter
    def coach_limit(self, value: int):
        self._set_positive_int("coach_limit", value)

    @property
    def related_limit(self) -> int:
        return self.data.get("related_limit", RELATED_POLICY.limit)

    @related_limit.setter
    def related_limit(self, value: int):
        self._set_positive_int("related_limit", value)

    @property
    def coach_history_limit(self) -> int:
        return self.data.get("coach_history_limit", 20)

    @coach_history_limit.setter
    def coach_history_limit(self, value: int):
        self._set_positive_int("coach_history_limit", value)

    @property
    def max_context_tokens(self) -> int:
        return self.data.get("max_context_tokens", 6000)

    @max_context_tokens.setter
    def max_context_tokens(self, value: int):
        self._set_positive_int("max_context_tokens", value)

    @property
    def recap_days(self) -> int:
        return self.data.get("recap_days", 7)

    @recap_days.setter
    def recap_days(self, value: int):
        self._set_positive_int("recap_days", value)

    # ------------------------------------------------------------------
    # retrieval policies with configured thresholds
    # ------------------------------------------------------------------

    def search_policy(self) -> RetrievalPolicy:
        return RetrievalPolicy("search", self.search_min_similarity, self.search_limit,
                               SEARCH_POLICY.excerpt_chars, SEARCH_POLICY.ellipsis)

    def reflect_policy(self) -> RetrievalPolicy:
        return RetrievalPolicy("reflect", self.rag_min_similarity, self.reflect_limit,
                               REFLECT_POLICY.excerpt_chars)

    def coach_policy(self) -> RetrievalPolicy:
        return RetrievalPolicy("coach", self.rag_min_similarity, self.coach_limit,
                               COACH_POLICY.excerpt_chars)

    def related_policy(self) -> RetrievalPolicy:
        return RetrievalPolicy("find_related", self.rag_min_similarity, self.related_limit,
                               RELATED_POLICY.excerpt_chars)
