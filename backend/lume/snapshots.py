# lume/snapshots.py
from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from lume.domain import SessionSnapshot

logger = logging.getLogger(__name__)


class CorruptSnapshot(Exception):
    """The snapshot file exists but cannot be parsed."""


class SnapshotStore:
    """
    Persist the {credential, actor} pair of this installation as one JSON file.

    Each call opens, reads or writes, and closes the file. Writes go to a
    temporary sibling that is renamed over the target, so a reader sees the
    old snapshot or the new one, never half of one.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Optional[SessionSnapshot]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

        try:
            return SessionSnapshot.model_validate_json(raw)
        except ValidationError as e:
            raise CorruptSnapshot(str(self._path)) from e

    def save(self, snapshot: SessionSnapshot) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".session-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(snapshot.model_dump_json())
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)
        logger.debug("Session snapshot cleared at %s", self._path)
