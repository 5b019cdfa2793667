"""Local file cache for raw profile documents."""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from gridloss.errors import CacheError

logger = logging.getLogger(__name__)


class LocalCache:
    """
    A single cached blob on disk.

    After save(), ``is_changed`` tells whether the stored bytes differ from
    what was on disk before (a first-ever save counts as a change).
    """

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self.is_changed = False

    def load(self) -> bytes:
        try:
            return self.path.read_bytes()
        except OSError as e:
            raise CacheError(f"cannot read cache {self.path}: {e}", str(self.path)) from e

    def save(self, data: bytes) -> None:
        previous = self._digest_on_disk()
        self.is_changed = False

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=str(self.path.parent))
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.replace(tmp_name, self.path)
                self.is_changed = previous != hashlib.sha256(data).hexdigest()
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise CacheError(f"cannot write cache {self.path}: {e}", str(self.path)) from e

        logger.debug(f"Saved {len(data)} bytes to {self.path} (changed={self.is_changed})")

    def _digest_on_disk(self) -> Optional[str]:
        try:
            return hashlib.sha256(self.path.read_bytes()).hexdigest()
        except OSError:
            return None
