"""Three-tier runtime configuration loader.

Configuration priority (highest to lowest):
1. CLI overrides
2. ``LIVEPATCH_DB_PATH`` (storage.db_path only)
3. Project config (.livepatch/runtime.json in the project root)
4. User config (~/.livepatch/runtime.json)
5. System defaults (config/defaults/runtime.json)
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from config.schema import LivepatchSettings

logger = logging.getLogger(__name__)


class ConfigLoader:
    """Three-tier runtime.json loader."""

    def __init__(self, project_root: str | Path | None = None, env: Mapping[str, str] | None = None):
        self.project_root = Path(project_root).resolve() if project_root else None
        self._system_defaults_dir = Path(__file__).parent / "defaults"
        self._env = env if env is not None else os.environ

    def load(self, cli_overrides: dict[str, Any] | None = None) -> LivepatchSettings:
        """Load and merge runtime config from all tiers."""
        merged = self._deep_merge(
            self._load_system_defaults(),
            self._load_user_config(),
            self._load_project_config(),
        )

        env_db_path = self._env.get("LIVEPATCH_DB_PATH")
        if env_db_path:
            merged = self._deep_merge(merged, {"storage": {"db_path": env_db_path}})

        if cli_overrides:
            merged = self._deep_merge(merged, cli_overrides)

        merged = self._expand_env_vars(merged)
        merged = self._remove_none_values(merged)
        return LivepatchSettings(**merged)

    # ── Internal helpers ──

    def _load_system_defaults(self) -> dict[str, Any]:
        return self._load_json(self._system_defaults_dir / "runtime.json")

    def _load_user_config(self) -> dict[str, Any]:
        return self._load_json(Path.home() / ".livepatch" / "runtime.json")

    def _load_project_config(self) -> dict[str, Any]:
        if not self.project_root:
            return {}
        return self._load_json(self.project_root / ".livepatch" / "runtime.json")

    @staticmethod
    def _load_json(path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("ignoring unreadable config %s: %s", path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("ignoring config %s: top level is not an object", path)
            return {}
        return data

    def _deep_merge(self, *dicts: dict[str, Any]) -> dict[str, Any]:
        """Deep merge multiple dictionaries. Later dicts override earlier ones."""
        result: dict[str, Any] = {}
        for d in dicts:
            for key, value in d.items():
                if key not in result:
                    result[key] = value
                elif value is None:
                    continue
                elif isinstance(value, dict) and isinstance(result[key], dict):
                    result[key] = self._deep_merge(result[key], value)
                else:
                    result[key] = value
        return result

    def _expand_env_vars(self, obj: Any) -> Any:
        """Recursively expand ${VAR} and ~ in string values."""
        if isinstance(obj, dict):
            return {k: self._expand_env_vars(v) for k, v in obj.items()}
        if isinstance(obj, list):
            return [self._expand_env_vars(v) for v in obj]
        if isinstance(obj, str):
            return os.path.expandvars(os.path.expanduser(obj))
        return obj

    def _remove_none_values(self, obj: Any) -> Any:
        """Recursively remove None values to allow Pydantic defaults."""
        if isinstance(obj, dict):
            return {k: self._remove_none_values(v) for k, v in obj.items() if v is not None}
        if isinstance(obj, list):
            return [self._remove_none_values(v) for v in obj if v is not None]
        return obj


def load_config(
    project_root: str | Path | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> LivepatchSettings:
    """Convenience function to load runtime configuration."""
    return ConfigLoader(project_root=project_root).load(cli_overrides=cli_overrides)
