"""
host/yaml_store.py — YAML Configuration Store

Persists the proactive configuration snapshot as a YAML file, so that
settings changed at runtime (/set, /enable, /disable) survive a restart.
On load the file is applied as overrides on top of the defaults from
config.yaml; keys missing from the file keep their default value.

File I/O runs in a worker thread (asyncio.to_thread). Writes go to a
uniquely named temp file first and are renamed into place.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from chime.config.settings import ProactiveConfig
from chime.exceptions import ConfigStoreError
from chime.host.base import ConfigStore
from chime.observability.logger import get_logger

log = get_logger(__name__)


class YamlConfigStore(ConfigStore):

    def __init__(self, path: str | Path, defaults: Optional[ProactiveConfig] = None) -> None:
        self.path = Path(path)
        self._defaults = defaults or ProactiveConfig()

    async def load(self) -> Optional[ProactiveConfig]:
        data = await asyncio.to_thread(self._read)
        if data is None:
            log.debug("config_store.empty", path=str(self.path))
            return None
        try:
            config = self._defaults.merged(data)
        except ValidationError as e:
            raise ConfigStoreError(f"Stored configuration in {self.path} is invalid: {e}") from e
        log.info("config_store.loaded", path=str(self.path))
        return config

    async def save(self, config: ProactiveConfig) -> None:
        await asyncio.to_thread(self._write, config.model_dump(mode="json"))
        log.info("config_store.saved", path=str(self.path))

    # ── Blocking helpers (worker thread) ──────────────────────────────────────

    def _read(self) -> Optional[dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigStoreError(f"Could not read {self.path}: {e}") from e
        if data is None:
            return None
        if not isinstance(data, dict):
            raise ConfigStoreError(f"{self.path} must contain a mapping, got {type(data).__name__}")
        return data

    def _write(self, data: dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(
                dir=self.path.parent, prefix=f"{self.path.name}.", suffix=".tmp"
            )
        except OSError as e:
            raise ConfigStoreError(f"Could not write {self.path}: {e}") from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
            os.replace(tmp, self.path)
        except OSError as e:
            Path(tmp).unlink(missing_ok=True)
            raise ConfigStoreError(f"Could not write {self.path}: {e}") from e
