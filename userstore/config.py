"""Configuration management for the user store service."""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import yaml

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
_KNOWN_KEYS = {"store_path", "host", "port", "log_level", "trusted_proxies"}


def resolve_store_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the user snapshot file."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (_PROJECT_ROOT / "data" / "users.json").resolve(strict=False)


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the optional YAML configuration file."""
    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (_PROJECT_ROOT / "config" / "userstore.yaml").resolve(strict=False)


def _parse_port(value: object) -> int:
    try:
        port = int(str(value).strip())
    except ValueError as exc:
        raise ValueError(f"Invalid port {value!r}") from exc
    if port < 1 or port > 65535:
        raise ValueError(f"Port must be between 1 and 65535, got {port}")
    return port


def _parse_log_level(value: object) -> str:
    level = str(value).strip().upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"Unknown log level {value!r}")
    return level


def _parse_trusted_proxies(value: object) -> List[str] | str:
    if isinstance(value, str):
        items = [item.strip() for item in value.split(",") if item.strip()]
    elif isinstance(value, (list, tuple)):
        items = [str(item).strip() for item in value if str(item).strip()]
    else:
        raise ValueError("trusted_proxies must be a string or a list of hosts")
    if not items or items == ["*"]:
        return "*"
    return items


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the HTTP service and its backing store."""

    store_path: Path
    host: str = "127.0.0.1"
    port: int = 3333
    log_level: str = "INFO"
    trusted_proxies: List[str] | str = "*"

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "Settings":
        """Create :class:`Settings` from raw dictionary data."""

        unknown = set(data.keys()) - _KNOWN_KEYS
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        raw_store_path = data.get("store_path")
        if raw_store_path:
            candidate = Path(str(raw_store_path)).expanduser()
            if not candidate.is_absolute() and base_path is not None:
                candidate = base_path / candidate
            store_path = candidate.resolve(strict=False)
        else:
            store_path = resolve_store_path(None)

        return Settings(
            store_path=store_path,
            host=str(data.get("host") or "127.0.0.1"),
            port=_parse_port(data.get("port", 3333)),
            log_level=_parse_log_level(data.get("log_level", "INFO")),
            trusted_proxies=_parse_trusted_proxies(data.get("trusted_proxies", "*")),
        )


def _load_yaml(config_path: Path) -> Dict[str, object]:
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Configuration file {config_path} must contain a mapping")
    return raw


def load_settings(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Build settings from defaults, an optional YAML file and the environment."""

    env = os.environ if environ is None else environ

    if config_path is None:
        config_path = resolve_config_path(env.get("USERSTORE_CONFIG"))
        required = bool(env.get("USERSTORE_CONFIG"))
    else:
        required = True

    if config_path.is_file():
        settings = Settings.from_dict(_load_yaml(config_path), base_path=config_path.parent)
    elif required:
        raise ValueError(f"Configuration file {config_path} does not exist")
    else:
        settings = Settings.from_dict({})

    overrides: Dict[str, object] = {}
    if env.get("USERSTORE_STORE_PATH"):
        overrides["store_path"] = resolve_store_path(env["USERSTORE_STORE_PATH"])
    if env.get("USERSTORE_HOST"):
        overrides["host"] = env["USERSTORE_HOST"].strip()
    if env.get("USERSTORE_PORT"):
        overrides["port"] = _parse_port(env["USERSTORE_PORT"])
    if env.get("USERSTORE_LOG_LEVEL"):
        overrides["log_level"] = _parse_log_level(env["USERSTORE_LOG_LEVEL"])
    if env.get("USERSTORE_TRUSTED_PROXIES"):
        overrides["trusted_proxies"] = _parse_trusted_proxies(env["USERSTORE_TRUSTED_PROXIES"])

    return replace(settings, **overrides) if overrides else settings


__all__ = ["Settings", "load_settings", "resolve_config_path", "resolve_store_path"]
