from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_UNIQUSH_SERVICE = "officeradar"


@dataclass
class DatabaseConfig:
    engine: str
    name: str
    path: Path

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DatabaseConfig":
        return cls(
            engine=data.get("type", "sqlite"),
            name=data.get("name", "presence.db"),
            path=Path(data.get("path", "data")),
        )


@dataclass
class SyncGatewayConfig:
    url: str
    timeout: float = 10.0
    longpoll_timeout: float = 60.0
    design: str = "officeradar"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncGatewayConfig":
        url = data.get("url")
        if not url:
            raise ValueError("Sync gateway configuration missing 'url'")
        longpoll_timeout = float(data.get("longpoll_timeout", 60.0))
        if longpoll_timeout <= 0:
            raise ValueError("Sync gateway 'longpoll_timeout' must be positive")
        return cls(
            url=str(url).rstrip("/"),
            timeout=float(data.get("timeout", 10.0)),
            longpoll_timeout=longpoll_timeout,
            design=str(data.get("design", "officeradar")),
        )


@dataclass
class UniqushConfig:
    url: str
    service: str = DEFAULT_UNIQUSH_SERVICE
    push_service_type: str = "apns"
    timeout: float = 10.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UniqushConfig":
        url = data.get("url")
        if not url:
            raise ValueError("Uniqush configuration missing 'url'")
        return cls(
            url=str(url).rstrip("/"),
            service=str(data.get("service") or DEFAULT_UNIQUSH_SERVICE),
            push_service_type=str(data.get("push_service_type") or "apns"),
            timeout=float(data.get("timeout", 10.0)),
        )


@dataclass
class ChangesConfig:
    since: Optional[str] = None
    error_delay: float = 5.0
    fail_fast_actions: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChangesConfig":
        since = data.get("since")
        fail_fast_actions = data.get("fail_fast_actions")
        if fail_fast_actions is None:
            fail_fast_actions = True
        if not isinstance(fail_fast_actions, bool):
            raise ValueError("Changes 'fail_fast_actions' must be a boolean")
        return cls(
            since=str(since) if since not in (None, "") else None,
            error_delay=max(0.0, float(data.get("error_delay", 5.0))),
            fail_fast_actions=fail_fast_actions,
        )


@dataclass
class LoggingConfig:
    level: int = logging.INFO
    path: Optional[Path] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoggingConfig":
        raw_level = data.get("level", "INFO")
        if isinstance(raw_level, int):
            level = raw_level
        else:
            level = logging.getLevelName(str(raw_level).upper())
            if not isinstance(level, int):
                raise ValueError(f"Unknown logging level: {raw_level}")
        raw_path = data.get("path")
        return cls(level=level, path=Path(raw_path) if raw_path else None)


@dataclass
class AppConfig:
    sync_gateway: SyncGatewayConfig
    uniqush: UniqushConfig
    presence: DatabaseConfig
    changes: ChangesConfig = field(default_factory=ChangesConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfig":
        section = data.get("officeradar", data) if isinstance(data, dict) else {}
        return cls(
            sync_gateway=SyncGatewayConfig.from_dict(section.get("sync_gateway") or {}),
            uniqush=UniqushConfig.from_dict(section.get("uniqush") or {}),
            presence=DatabaseConfig.from_dict(section.get("presence") or {}),
            changes=ChangesConfig.from_dict(section.get("changes") or {}),
            logging=LoggingConfig.from_dict(section.get("logging") or {}),
        )


def load_raw_config(file_path: Path | str) -> Dict[str, Any]:
    path = Path(file_path)
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as file:
        return yaml.safe_load(file) or {}


def app_config(file_path: Path | str, overrides: Optional[Dict[str, Any]] = None) -> AppConfig:
    """
    Load the YAML configuration and apply command-line overrides.

    ``overrides`` keys are dotted section paths such as ``sync_gateway.url``;
    ``None`` values are ignored so optional arguments leave the file intact.
    """
    config_dict = load_raw_config(file_path)
    if "officeradar" not in config_dict:
        config_dict = {"officeradar": config_dict}
    section = config_dict["officeradar"]
    for dotted, value in (overrides or {}).items():
        if value is None:
            continue
        group, _, key = dotted.partition(".")
        target = section.get(group)
        if not isinstance(target, dict):
            target = section[group] = {}
        target[key] = value
    return AppConfig.from_dict(config_dict)
