"""Configuration loading helpers for storm-collector."""

from __future__ import annotations

import json
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import ValidationError

from ..errors import ConfigError
from .models import CollectorConfig
from .secrets import EnvSecretSource, SecretSource, apply_secrets

CONFIG_EXTENSIONS = (".yaml", ".yml", ".json")
CONFIG_FILENAME = "collector.yaml"
TEMPLATE_NAME = "collector_template.yaml"
HOME_ENV = "STORM_COLLECTOR_HOME"


def _read_file(path: Path) -> dict:
    text = path.read_text(encoding="utf-8")
    if path.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(text) or {}
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file must contain a mapping: {path}")
    return data


@dataclass(slots=True)
class ConfigLocator:
    """Resolve important paths from project root."""

    project_root: Path | None = None
    config_dir: Path | None = None
    data_dir: Path | None = None
    history_dir: Path | None = None
    outputs_dir: Path | None = None
    logs_dir: Path | None = None

    def __post_init__(self) -> None:
        env_root = os.environ.get(HOME_ENV)
        if self.project_root is not None:
            root = Path(self.project_root).expanduser().resolve()
        elif env_root:
            root = Path(env_root).expanduser().resolve()
        else:
            root = Path(__file__).resolve().parents[2]
        self.project_root = root
        self.config_dir = root / "config"
        self.data_dir = root / "data"
        self.history_dir = self.data_dir / "history"
        self.outputs_dir = self.data_dir / "outputs"
        self.logs_dir = root / "logs"
        self.ensure_directories()

    def ensure_directories(self) -> None:
        for directory in (
            self.config_dir,
            self.data_dir,
            self.history_dir,
            self.outputs_dir,
            self.logs_dir,
        ):
            directory.mkdir(parents=True, exist_ok=True)

    def config_path(self) -> Path:
        return self.config_dir / CONFIG_FILENAME


class ConfigRepository:
    """Repository encapsulating config IO, secret overlay and validation."""

    def __init__(
        self,
        locator: ConfigLocator | None = None,
        secrets: SecretSource | None = None,
    ) -> None:
        self.locator = locator or ConfigLocator()
        self.secrets = secrets or EnvSecretSource()
        self._cache: dict[Path, CollectorConfig] = {}

    def resolve_path(self, path: Path | None = None) -> Path:
        if path is None:
            return self.locator.config_path()
        if not path.is_absolute():
            return (self.locator.project_root / path).resolve()
        return path

    def load_config(self, path: Path | None = None) -> CollectorConfig:
        resolved = self.resolve_path(path)
        if resolved in self._cache:
            return self._cache[resolved]
        if not resolved.exists():
            raise ConfigError(
                f"Configuration not found: {resolved} (run `storm-collector init` to create one)"
            )
        if resolved.suffix not in CONFIG_EXTENSIONS:
            raise ConfigError(f"Unsupported configuration format: {resolved.suffix}")
        try:
            payload = _read_file(resolved)
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise ConfigError(f"Unable to decode config file {resolved}: {exc}") from exc
        try:
            config = CollectorConfig.model_validate(payload)
        except ValidationError as exc:
            raise ConfigError(f"Invalid configuration in {resolved}:\n{exc}") from exc
        config = apply_secrets(config, self.secrets)
        self._cache[resolved] = config
        return config

    def template_path(self) -> Path:
        template = Path(__file__).resolve().parent / "templates" / TEMPLATE_NAME
        if not template.exists():
            raise FileNotFoundError(f"Template not found: {template}")
        return template

    def write_template(self, path: Path | None = None, overwrite: bool = False) -> Path:
        target = self.resolve_path(path)
        if target.exists() and not overwrite:
            raise FileExistsError(f"Configuration already exists: {target}")
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(self.template_path(), target)
        self._cache.pop(target, None)
        return target


__all__ = ["CONFIG_EXTENSIONS", "ConfigLocator", "ConfigRepository"]
