"""
Session Handle Persistence

Where a local session handle is cached between invocations. The session
manager receives one of these explicitly; CI contexts never call it.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..secrets.interface import SessionHandle, SessionSource

logger = logging.getLogger(__name__)


class HandleStore(ABC):
    """Holds at most one cached session handle."""

    @abstractmethod
    def load(self) -> Optional[SessionHandle]:
        """
        Return the cached handle, or None.

        Unreadable or corrupt content is treated as absent.
        """
        pass

    @abstractmethod
    def save(self, handle: SessionHandle) -> None:
        """Replace the cached handle."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Forget the cached handle. No-op if there is none."""
        pass


class FileHandleStore(HandleStore):
    """
    JSON file holding one handle, readable by its owner only.

    Writes go to a temp file in the same directory followed by a rename,
    so concurrent readers see either the old handle or the new one.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[SessionHandle]:
        if not self.path.exists():
            return None

        try:
            data = json.loads(self.path.read_text())
            return SessionHandle(
                token=data["token"],
                source=SessionSource(data["source"]),
                acquired_at=datetime.fromisoformat(data["acquired_at"]),
                cached=True,
                account=data.get("account"),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable session cache {self.path}: {e}")
            return None

    def save(self, handle: SessionHandle) -> None:
        payload = json.dumps({
            "token": handle.token,
            "source": handle.source.value,
            "acquired_at": handle.acquired_at.isoformat(),
            "account": handle.account,
        })

        self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        # mkstemp creates the file 0600
        fd, tmp_name = tempfile.mkstemp(prefix=".session-", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        os.chmod(self.path, 0o600)
        logger.debug(f"Cached session handle at {self.path}")

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class MemoryHandleStore(HandleStore):
    """Process-local handle store."""

    def __init__(self, handle: Optional[SessionHandle] = None):
        self.handle = handle
        self.writes = 0

    def load(self) -> Optional[SessionHandle]:
        return self.handle

    def save(self, handle: SessionHandle) -> None:
        self.handle = handle
        self.writes += 1

    def clear(self) -> None:
        self.handle = None
