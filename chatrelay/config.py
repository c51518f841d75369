from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field

log = logging.getLogger("chatrelay.config")

CONFIG_PATH = Path("configs/server.yaml")
ADMIN_PASSWORD_ENV = "CHATRELAY_ADMIN_PASSWORD"


class _Section(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Limits(_Section):
    max_users: int = Field(100, gt=0)
    max_messages_per_room: int = Field(30, gt=0)
    replay_size: int = Field(30, ge=0)
    max_message_length: int = Field(300, gt=0)
    max_private_messages: int = Field(50, gt=0)
    max_pending_reports: int = Field(200, gt=0)
    name_min: int = Field(2, ge=1)
    name_max: int = Field(20, ge=1)


class SweeperSettings(_Section):
    interval_ms: int = Field(1_800_000, gt=0)
    purge_messages: bool = True
    retention_ms: int = Field(3_600_000, gt=0)
    evict_inactive: bool = True
    inactive_timeout_ms: int = Field(900_000, gt=0)


class SyntheticParticipant(_Section):
    name: str
    gender: Literal["Male", "Female"]
    country: str


DEFAULT_PARTICIPANTS = [
    {"name": "Sarah", "gender": "Female", "country": "US"},
    {"name": "Mike", "gender": "Male", "country": "GB"},
    {"name": "Emma", "gender": "Female", "country": "CA"},
    {"name": "Alex", "gender": "Male", "country": "AU"},
    {"name": "Lisa", "gender": "Female", "country": "DE"},
]


class SyntheticSettings(_Section):
    enabled: bool = True
    interval_ms: int = Field(45_000, gt=0)
    participants: List[SyntheticParticipant] = Field(
        default_factory=lambda: [SyntheticParticipant(**p) for p in DEFAULT_PARTICIPANTS]
    )


class AdminSettings(_Section):
    username: str = "admin"
    password: str = "admin123"


class Settings(_Section):
    listen: str = "0.0.0.0:3000"
    trust_forwarded_for: bool = False
    presence_mode: Literal["anonymous", "roster"] = "roster"
    room_assignment: Literal["self-select", "gender-assigned"] = "self-select"
    limits: Limits = Field(default_factory=Limits)
    sweeper: SweeperSettings = Field(default_factory=SweeperSettings)
    synthetic: SyntheticSettings = Field(default_factory=SyntheticSettings)
    admin: AdminSettings = Field(default_factory=AdminSettings)

    @property
    def listen_addr(self) -> Tuple[str, int]:
        host, port = self.listen.rsplit(":", 1)
        return host, int(port)


def load_settings(path: Optional[str | Path] = None, overrides: Optional[Dict[str, Any]] = None) -> Settings:
    """Read YAML config (missing file -> defaults) and apply CLI/env overrides."""

    config_path = Path(path) if path else CONFIG_PATH
    data: Dict[str, Any] = {}
    if config_path.exists():
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
        log.info("Loaded config from %s", config_path)
    elif path:
        raise FileNotFoundError(f"config file not found: {config_path}")

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    env_password = os.getenv(ADMIN_PASSWORD_ENV)
    if env_password:
        data.setdefault("admin", {})
        data["admin"]["password"] = env_password

    return Settings.model_validate(data)


__all__ = [
    "Settings",
    "Limits",
    "SweeperSettings",
    "SyntheticSettings",
    "SyntheticParticipant",
    "AdminSettings",
    "load_settings",
    "CONFIG_PATH",
]
