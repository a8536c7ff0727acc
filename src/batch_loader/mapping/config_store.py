from __future__ import annotations

import json
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Protocol

from batch_loader.errors import ConfigInvalidError, ConfigNotFoundError
from batch_loader.mapping.types import LoadConfig
from batch_loader.settings import get_settings
from batch_loader.utils.logging import get_logger

logger = get_logger(__name__)


class ConfigStore(Protocol):
    """Where load configurations come from. Persistence is someone else's job."""
    def get_config(self, config_id: str) -> LoadConfig: ...


class InMemoryConfigStore:
    """
    A dict-backed `ConfigStore`.

    One instance per composition root, handed to the loader explicitly.
    """

    def __init__(self, configs: list[LoadConfig] | None = None) -> None:
        self._configs: dict[str, LoadConfig] = {}
        for c in configs or []:
            self.save_config(c)

    def save_config(self, config: LoadConfig) -> str:
        """Store `config` (validated first) and return its id. Empty ids get a generated one."""
        config.validate()
        config_id = config.config_id
        if not config_id:
            config_id = uuid.uuid4().hex
            config = replace(config, config_id=config_id)
        self._configs[config_id] = config
        logger.debug("config_saved", config_id=config_id, table_name=config.table_name)
        return config_id

    def get_config(self, config_id: str) -> LoadConfig:
        try:
            return self._configs[config_id]
        except KeyError:
            raise ConfigNotFoundError(f"no load config with id {config_id!r}") from None

    def list_configs(self) -> list[LoadConfig]:
        return list(self._configs.values())


def load_config_file(path: Path) -> LoadConfig:
    """
    Read a JSON load config document.

    The config id defaults to the file stem; `dialect` and `batch_size`
    default to `BATCH_LOADER_DIALECT` / `BATCH_LOADER_BATCH_SIZE`.
    """
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigNotFoundError(f"config file not found: {path}") from None
    except json.JSONDecodeError as e:
        raise ConfigInvalidError(f"{path}: invalid JSON ({e})") from e

    if isinstance(raw, dict):
        settings = get_settings()
        if not raw.get("config_id") and not raw.get("id"):
            raw["config_id"] = path.stem
        raw.setdefault("dialect", settings.dialect)
        raw.setdefault("batch_size", settings.batch_size)
    config = LoadConfig.from_mapping(raw)
    config.validate()
    return config
