from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Tuple


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _default_tmp_dir() -> str:
    return str(Path(tempfile.gettempdir()) / "voiceprobe")


def parse_bearer_tokens(raw: str) -> Dict[str, Tuple[str, str]]:
    """
    Parse `token=user_id[:display_name]` pairs separated by commas.

    Malformed entries are skipped; display name defaults to the user id.
    """
    out: Dict[str, Tuple[str, str]] = {}
    for item in (raw or "").split(","):
        token, sep, identity = item.strip().partition("=")
        token = token.strip()
        if not sep or not token:
            continue
        user_id, _, display_name = identity.strip().partition(":")
        user_id = user_id.strip()
        if not user_id:
            continue
        out[token] = (user_id, display_name.strip() or user_id)
    return out


@dataclass(frozen=True)
class ServiceConfig:
    AI_SERVICE_URL: str = "http://localhost:8000"
    AI_SERVICE_MOCK: bool = False
    AI_TIMEOUT_SECONDS: float = 300.0
    AI_HEALTH_TIMEOUT_SECONDS: float = 5.0
    MAX_UPLOAD_BYTES: int = 50 * 1024 * 1024
    DOWNLOAD_TIMEOUT_SECONDS: float = 60.0
    SHARE_DOMAIN: str = "drive.google.com"
    TMP_DIR: str = ""
    API_KEY: str = ""
    BEARER_TOKENS: str = ""
    MAX_PAGE_SIZE: int = 100
    LOG_LEVEL: str = "INFO"

    def tmp_dir_path(self) -> Path:
        return Path(self.TMP_DIR or _default_tmp_dir()).expanduser().resolve()

    def bearer_tokens(self) -> Dict[str, Tuple[str, str]]:
        return parse_bearer_tokens(self.BEARER_TOKENS)


def load_config() -> ServiceConfig:
    return ServiceConfig(
        AI_SERVICE_URL=_getenv_str("VOICEPROBE_AI_SERVICE_URL", "http://localhost:8000").rstrip("/"),
        AI_SERVICE_MOCK=_getenv_bool("VOICEPROBE_AI_SERVICE_MOCK", False),
        AI_TIMEOUT_SECONDS=_getenv_float("VOICEPROBE_AI_TIMEOUT_SECONDS", 300.0),
        AI_HEALTH_TIMEOUT_SECONDS=_getenv_float("VOICEPROBE_AI_HEALTH_TIMEOUT_SECONDS", 5.0),
        MAX_UPLOAD_BYTES=_getenv_int("VOICEPROBE_MAX_UPLOAD_BYTES", 50 * 1024 * 1024),
        DOWNLOAD_TIMEOUT_SECONDS=_getenv_float("VOICEPROBE_DOWNLOAD_TIMEOUT_SECONDS", 60.0),
        SHARE_DOMAIN=_getenv_str("VOICEPROBE_SHARE_DOMAIN", "drive.google.com").strip().lower(),
        TMP_DIR=_getenv_str("VOICEPROBE_TMP_DIR", _default_tmp_dir()),
        API_KEY=_getenv_str("VOICEPROBE_API_KEY", ""),
        BEARER_TOKENS=_getenv_str("VOICEPROBE_BEARER_TOKENS", ""),
        MAX_PAGE_SIZE=_getenv_int("VOICEPROBE_MAX_PAGE_SIZE", 100),
        LOG_LEVEL=_getenv_str("VOICEPROBE_LOG_LEVEL", "INFO"),
    )
