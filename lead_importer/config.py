"""Configuration helpers for the lead import pipeline."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

LOGGER = logging.getLogger(__name__)

SECRET_ENV_VAR = "FICHE_HASH_SECRET"
DEFAULT_SECRET = "your-secret-key-change-in-production"


class ConfigurationError(RuntimeError):
    """Raised when configuration files are missing or malformed."""


_SUPPORTED_EXTENSIONS = {".json", ".yaml", ".yml"}


def load_configuration(path: str | Path) -> Dict[str, Any]:
    """Load configuration data from a JSON or YAML file."""

    file_path = Path(path)
    if not file_path.exists():
        raise ConfigurationError(f"Configuration file '{file_path}' was not found")

    if file_path.suffix.lower() not in _SUPPORTED_EXTENSIONS:
        raise ConfigurationError(
            f"Unsupported configuration format '{file_path.suffix}'. Supported extensions: {sorted(_SUPPORTED_EXTENSIONS)}"
        )

    text = file_path.read_text(encoding="utf-8")
    if file_path.suffix.lower() == ".json":
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid JSON in '{file_path}': {exc}") from exc
    else:
        try:
            import yaml  # type: ignore
        except ImportError as exc:  # pragma: no cover - dependency optional
            raise ConfigurationError(
                "YAML configuration requires the 'pyyaml' package to be installed"
            ) from exc
        data = yaml.safe_load(text)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration in '{file_path}' must be a mapping")
    return data


@dataclass(frozen=True)
class ImportSettings:
    """Runtime settings for import jobs."""

    work_dir: Path = Path("uploads")
    reference_secret: str = DEFAULT_SECRET
    preview_limit: int = 100
    initial_state_title: str = "EN-ATTENTE"
    database_url: Optional[str] = None

    @classmethod
    def from_mapping(
        cls, config: Optional[Mapping[str, Any]] = None, *, environ: Optional[Mapping[str, str]] = None
    ) -> "ImportSettings":
        config = dict(config or {})
        environ = os.environ if environ is None else environ

        secret = environ.get(SECRET_ENV_VAR) or config.get("reference_secret") or DEFAULT_SECRET
        if secret == DEFAULT_SECRET:
            LOGGER.warning(
                "Using the default reference secret; set %s or 'reference_secret' in production", SECRET_ENV_VAR
            )

        try:
            preview_limit = int(config.get("preview_limit", 100))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError("'preview_limit' must be an integer") from exc
        if preview_limit <= 0:
            raise ConfigurationError("'preview_limit' must be positive")

        return cls(
            work_dir=Path(config.get("work_dir") or "uploads"),
            reference_secret=str(secret),
            preview_limit=preview_limit,
            initial_state_title=str(config.get("initial_state_title") or "EN-ATTENTE"),
            database_url=config.get("database_url") or None,
        )

    @classmethod
    def load(cls, path: Optional[str | Path] = None) -> "ImportSettings":
        """Build settings from an optional configuration file plus the environment."""

        config = load_configuration(path) if path else {}
        return cls.from_mapping(config)


__all__ = ["ConfigurationError", "ImportSettings", "load_configuration"]
