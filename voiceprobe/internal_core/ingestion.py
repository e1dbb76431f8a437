from __future__ import annotations

"""
Audio ingestion: turn an upload, a remote URL or a base64 payload into a
local temporary file that lives exactly as long as the caller's `with` block.
"""

import base64
import binascii
import logging
import re
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional
from urllib.parse import urlsplit

import requests

from .config import ServiceConfig
from .errors import InputValidationError, InternalError, InvalidEncodingError, PayloadTooLargeError
from .http_session import SessionProvider

logger = logging.getLogger(__name__)

_SHARE_ID_RE = re.compile(r"/d/([A-Za-z0-9_-]+)")
_DATA_URL_PREFIX_RE = re.compile(r"^data:[^,]*;base64,", flags=re.IGNORECASE)
_SUFFIX_RE = re.compile(r"^\.[A-Za-z0-9]{1,8}$")
_DOWNLOAD_CHUNK_BYTES = 1024 * 1024


@dataclass(frozen=True)
class AudioResource:
    path: Path
    file_name: str
    source_locator: str
    size_bytes: int


def rewrite_share_url(url: str, share_domain: str = "drive.google.com") -> str:
    """Rewrite a cloud-drive share link (`.../d/{id}/...`) to its direct-download form."""
    parts = urlsplit(url)
    host = (parts.hostname or "").lower()
    if not share_domain or host != share_domain.lower():
        return url
    match = _SHARE_ID_RE.search(parts.path)
    if not match:
        return url
    return f"https://{share_domain}/uc?id={match.group(1)}&export=download"


def sanitize_file_name(filename: Optional[str], default: str = "audio") -> str:
    raw = Path(str(filename or "")).name.strip()
    stem = Path(raw).stem.strip()
    safe = "".join(ch if (ch.isalnum() or ch in {"_", "-"}) else "_" for ch in stem).strip("_")
    safe = (safe or default)[:64]
    suffix = Path(raw).suffix.lower()
    if not _SUFFIX_RE.match(suffix):
        suffix = ""
    return f"{safe}{suffix}"


def _safe_unlink(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Failed to delete temp audio %s: %s", path, exc)


class AudioIngestionResolver:
    def __init__(
        self,
        tmp_dir: Path,
        *,
        max_bytes: int = 50 * 1024 * 1024,
        download_timeout_sec: float = 60.0,
        share_domain: str = "drive.google.com",
        session: Optional[requests.Session] = None,
    ):
        self._tmp_dir = Path(tmp_dir)
        self._max_bytes = int(max_bytes)
        self._download_timeout_sec = float(download_timeout_sec)
        self._share_domain = share_domain
        self._sessions = SessionProvider(session)

    @classmethod
    def from_config(cls, cfg: ServiceConfig, session: Optional[requests.Session] = None) -> "AudioIngestionResolver":
        return cls(
            cfg.tmp_dir_path(),
            max_bytes=cfg.MAX_UPLOAD_BYTES,
            download_timeout_sec=cfg.DOWNLOAD_TIMEOUT_SECONDS,
            share_domain=cfg.SHARE_DOMAIN,
            session=session,
        )

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    def _too_large(self, size: int) -> PayloadTooLargeError:
        return PayloadTooLargeError(
            f"Audio too large ({size / (1024 * 1024):.1f}MB), "
            f"max allowed is {self._max_bytes / (1024 * 1024):.1f}MB"
        )

    def _check_size(self, size: int) -> None:
        if size <= 0:
            raise InputValidationError("Audio payload is empty.")
        if size > self._max_bytes:
            raise self._too_large(size)

    def _new_temp_path(self, file_name: str) -> Path:
        try:
            self._tmp_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise InternalError(f"Temp directory unavailable: {exc}") from exc
        suffix = Path(file_name).suffix or ".tmp"
        return self._tmp_dir / f"{Path(file_name).stem}_{uuid.uuid4().hex}{suffix}"

    @contextmanager
    def _materialize(self, payload: bytes, file_name: str, source_locator: Optional[str]) -> Iterator[AudioResource]:
        path = self._new_temp_path(file_name)
        try:
            try:
                path.write_bytes(payload)
            except OSError as exc:
                raise InternalError(f"Failed to store audio: {exc}") from exc
            yield AudioResource(
                path=path,
                file_name=file_name,
                source_locator=source_locator or str(path),
                size_bytes=len(payload),
            )
        finally:
            _safe_unlink(path)

    @contextmanager
    def from_upload(self, payload: bytes, filename: Optional[str] = None) -> Iterator[AudioResource]:
        payload = bytes(payload or b"")
        self._check_size(len(payload))
        file_name = sanitize_file_name(filename, default="upload")
        with self._materialize(payload, file_name, None) as resource:
            yield resource

    @contextmanager
    def from_encoded(self, payload_b64: str, filename: Optional[str] = None) -> Iterator[AudioResource]:
        text = _DATA_URL_PREFIX_RE.sub("", str(payload_b64 or "").strip())
        text = "".join(text.split())
        if not text:
            raise InputValidationError("Audio data is required.")
        # Reject before decoding when the decoded size is certain to exceed the ceiling.
        estimated = (len(text) * 3) // 4
        if estimated - 2 > self._max_bytes:
            raise self._too_large(estimated)
        # Restore omitted "=" padding; a single leftover character is never valid base64.
        if len(text) % 4 == 1:
            raise InvalidEncodingError("Invalid Base64 audio.")
        text += "=" * (-len(text) % 4)
        try:
            payload = base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InvalidEncodingError("Invalid Base64 audio.") from exc
        self._check_size(len(payload))
        file_name = sanitize_file_name(filename, default="api_upload")
        with self._materialize(payload, file_name, None) as resource:
            yield resource

    def _validate_url(self, url: str) -> str:
        candidate = str(url or "").strip()
        if not candidate:
            raise InputValidationError("Audio URL is required.")
        try:
            parts = urlsplit(candidate)
        except ValueError as exc:
            raise InputValidationError(f"Malformed audio URL: {exc}") from exc
        if parts.scheme.lower() not in {"http", "https"} or not parts.hostname:
            raise InputValidationError("Audio URL must be an absolute http(s) URL.")
        return candidate

    @contextmanager
    def from_url(self, url: str) -> Iterator[AudioResource]:
        source_url = self._validate_url(url)
        download_url = rewrite_share_url(source_url, self._share_domain)
        if download_url != source_url:
            logger.info("Converted share URL to download URL: %s", download_url)

        url_name = Path(urlsplit(source_url).path).name
        file_name = sanitize_file_name(url_name if Path(url_name).suffix else None, default="downloaded")
        if not Path(file_name).suffix:
            file_name = f"{file_name}.audio"

        path = self._new_temp_path(file_name)
        try:
            size = self._download(download_url, path)
            yield AudioResource(path=path, file_name=file_name, source_locator=download_url, size_bytes=size)
        finally:
            _safe_unlink(path)

    def _download(self, url: str, path: Path) -> int:
        try:
            response = self._sessions.current().get(url, stream=True, timeout=self._download_timeout_sec)
        except requests.RequestException as exc:
            raise InputValidationError(f"Could not download audio: {exc}") from exc

        try:
            try:
                response.raise_for_status()
            except requests.RequestException as exc:
                raise InputValidationError(f"Could not download audio: {exc}") from exc

            declared = response.headers.get("Content-Length") if response.headers else None
            if declared and declared.isdigit() and int(declared) > self._max_bytes:
                raise self._too_large(int(declared))

            written = 0
            try:
                with open(path, "wb") as f:
                    for chunk in response.iter_content(chunk_size=_DOWNLOAD_CHUNK_BYTES):
                        if not chunk:
                            continue
                        written += len(chunk)
                        if written > self._max_bytes:
                            raise self._too_large(written)
                        f.write(chunk)
            except requests.RequestException as exc:
                raise InputValidationError(f"Audio download interrupted: {exc}") from exc
            except OSError as exc:
                raise InternalError(f"Failed to store downloaded audio: {exc}") from exc
        finally:
            response.close()

        if written <= 0:
            raise InputValidationError("Downloaded audio is empty.")
        return written
