"""Marker-file heartbeat for hosts without Unix sockets.

The payload is the modification time of an empty file under the user's local
data directory (or the working directory when that cannot be resolved).
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Any

import platformdirs

from core.health.base import HeartbeatChannel
from core.health.errors import (
    HeartbeatNotInitializedError,
    HeartbeatQueryError,
    HeartbeatStartupError,
)

logger = logging.getLogger(__name__)

APP_NAME = "swat-collector"
HEARTBEAT_FILENAME = "swat-collector.health"


def resolve_heartbeat_dir(app_name: str = APP_NAME) -> Path:
    try:
        return Path(platformdirs.user_data_dir(app_name, appauthor=False))
    except (OSError, RuntimeError, KeyError) as exc:
        logger.warning(f"Local data directory unavailable, using cwd: {exc}")

    try:
        return Path.cwd()
    except OSError as exc:
        raise HeartbeatStartupError(
            f"could not resolve a directory for the heartbeat file, {exc}"
        ) from exc


class FileHeartbeatChannel(HeartbeatChannel):
    transport = "file"

    def __init__(
        self,
        directory: str | Path | None = None,
        *,
        filename: str = HEARTBEAT_FILENAME,
        app_name: str = APP_NAME,
        clock: Any = time.time,
    ):
        self.directory = Path(directory) if directory is not None else None
        self.filename = filename
        self.app_name = app_name
        self.clock = clock
        self._path: Path | None = None

    @property
    def path(self) -> Path | None:
        return self._path

    def _marker_path(self) -> Path:
        if self._path is not None:
            return self._path
        directory = self.directory or resolve_heartbeat_dir(self.app_name)
        return directory / self.filename

    def create(self) -> Path:
        path = self._marker_path()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(b"")
        except OSError as exc:
            raise HeartbeatStartupError(
                f"could not create heartbeat file {path}, {exc}"
            ) from exc

        self._path = path
        logger.info(f"Heartbeat file created at {path}")
        return path

    def touch(self) -> None:
        if self._path is None:
            raise HeartbeatNotInitializedError(
                "heartbeat file touched before it was created"
            )
        now = float(self.clock())
        self._path.touch(exist_ok=True)
        os.utime(self._path, (now, now))

    async def start(self) -> None:
        self.create()

    def update(self) -> None:
        try:
            self.touch()
        except OSError as exc:
            # a stale mtime is what the probe should see here
            logger.error(f"Could not touch heartbeat file: {exc}")

    async def serve(self) -> None:
        # the filesystem answers queries, there is nothing to serve
        return None

    async def query(self) -> float:
        try:
            path = self._marker_path()
            return path.stat().st_mtime
        except (OSError, HeartbeatStartupError) as exc:
            raise HeartbeatQueryError(f"could not read heartbeat file, {exc}") from exc
