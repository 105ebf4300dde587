# src/vrf_oracle/runtime/lock.py
from __future__ import annotations

import os
from typing import Optional, TextIO


class SingleInstanceLock:
    """Best-effort single-host lock for the oracle process.

    Two oracles on one host sharing a keypair would race each other's
    submissions. This does nothing for oracles on different hosts.
    """

    def __init__(self, path: str) -> None:
        self.path = str(path)
        self._fh: Optional[TextIO] = None

    @property
    def held(self) -> bool:
        return self._fh is not None

    def acquire(self) -> bool:
        if self._fh is not None:
            return True
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        try:
            fh = open(self.path, "a+", encoding="utf-8")
        except OSError:
            return False

        try:
            import fcntl  # type: ignore

            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except ImportError:
            # No flock on this platform; the lock is advisory only.
            pass
        except OSError:
            fh.close()
            return False

        self._fh = fh
        try:
            fh.seek(0)
            fh.truncate()
            fh.write(f"pid={os.getpid()}\n")
            fh.flush()
        except OSError:
            pass
        return True

    def release(self) -> None:
        fh = self._fh
        self._fh = None
        if fh is None:
            return
        try:
            import fcntl  # type: ignore

            fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
        except (ImportError, OSError):
            pass
        fh.close()
