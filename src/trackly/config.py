"""Configuration models and helpers for Trackly."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Optional

from .paths import get_fallback_dir, get_sync_dir


@dataclass(slots=True)
class SyncSettings:
    """Runtime configuration for snapshot synchronization."""

    sync_interval: timedelta = timedelta(minutes=5)
    change_interval: timedelta = timedelta(seconds=30)
    sync_dir: Path = field(default_factory=get_sync_dir)
    fallback_dir: Path = field(default_factory=get_fallback_dir)
    remote_url: Optional[str] = None
    request_timeout: float = 10.0
    auto_sync: bool = True
    load_on_startup: bool = True

    @classmethod
    def from_intervals(
        cls,
        sync_minutes: float,
        change_seconds: float | None = None,
        *,
        sync_dir: Path | None = None,
        fallback_dir: Path | None = None,
        remote_url: str | None = None,
        auto_sync: bool = True,
        load_on_startup: bool = True,
    ) -> "SyncSettings":
        change = change_seconds if change_seconds is not None else 30.0
        return cls(
            sync_interval=timedelta(minutes=sync_minutes),
            change_interval=timedelta(seconds=change),
            sync_dir=Path(sync_dir) if sync_dir else get_sync_dir(),
            fallback_dir=Path(fallback_dir) if fallback_dir else get_fallback_dir(),
            remote_url=remote_url.rstrip("/") if remote_url else None,
            auto_sync=auto_sync,
            load_on_startup=load_on_startup,
        )
