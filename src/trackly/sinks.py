"""Durable destinations for sync snapshots."""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Optional, Protocol

import requests

from .errors import SinkError

logger = logging.getLogger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


def validate_key(key: str) -> str:
    if not _KEY_PATTERN.match(key) or key.startswith("."):
        raise ValueError(f"Invalid sync key: {key!r}")
    return key


class SyncSink(Protocol):
    """Write returns ``False`` on failure; read returns ``None`` when nothing is stored
    and raises :class:`SinkError` when the store cannot be reached."""

    name: str

    def write(self, key: str, payload: dict[str, Any]) -> bool:
        ...

    def read(self, key: str) -> Optional[dict[str, Any]]:
        ...


class FileSink:
    """Store each key as a JSON document inside ``directory``."""

    def __init__(self, directory: Path, *, name: str = "file") -> None:
        self.directory = Path(directory)
        self.name = name

    def path_for(self, key: str) -> Path:
        return self.directory / f"{validate_key(key)}.json"

    def write(self, key: str, payload: dict[str, Any]) -> bool:
        target = self.path_for(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.directory, prefix=f".{key}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(payload, handle, ensure_ascii=False)
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError:
            logger.warning("Failed to write %s to %s", key, target, exc_info=True)
            return False
        return True

    def read(self, key: str) -> Optional[dict[str, Any]]:
        target = self.path_for(key)
        try:
            text = target.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise SinkError(f"Cannot read {target}: {exc}") from exc
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise SinkError(f"{target} is not valid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise SinkError(f"{target} does not contain a JSON object")
        return payload


class RemoteSink:
    """Store snapshots on another Trackly server over HTTP."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        name: str = "remote",
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.name = name
        self._session = session or requests.Session()

    def write(self, key: str, payload: dict[str, Any]) -> bool:
        url = f"{self.base_url}/api/save-sync/{validate_key(key)}"
        try:
            response = self._session.post(url, json=payload, timeout=self.timeout)
        except requests.RequestException:
            logger.warning("Remote write to %s failed", url, exc_info=True)
            return False
        if not response.ok:
            logger.warning("Remote write to %s returned HTTP %s", url, response.status_code)
            return False
        return True

    def read(self, key: str) -> Optional[dict[str, Any]]:
        url = f"{self.base_url}/api/sync-files/{validate_key(key)}"
        try:
            response = self._session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise SinkError(f"Remote read from {url} failed: {exc}") from exc
        if response.status_code == 404:
            return None
        try:
            response.raise_for_status()
            payload = response.json()
        except (requests.HTTPError, ValueError) as exc:
            raise SinkError(f"Remote read from {url} failed: {exc}") from exc
        if not isinstance(payload, dict):
            raise SinkError(f"Remote read from {url} did not return a JSON object")
        return payload
