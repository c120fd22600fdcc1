"""Lock file that keeps a background loop unique per database.

The file sits next to the SQLite database and records who holds it::

    {"pid": 4242, "owner": "autofund", "db_path": "data/txgen.db", "acquired_at": ...}

Two generators pointed at different databases never contend. A lock whose
pid is gone is taken over on the next acquire.
"""

from __future__ import annotations

import json
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union


def pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except PermissionError:
        return True
    except OSError:
        return False
    return True


@dataclass
class LockState:
    acquired: bool
    reason: Optional[str] = None
    holder: Optional[Dict[str, Any]] = None
    recovered_from: Optional[int] = None

    def describe(self) -> str:
        if self.acquired:
            return "acquired"
        pid = (self.holder or {}).get("pid")
        return f"{self.reason} (pid {pid})" if pid else str(self.reason)


class PidLock:
    def __init__(self, path: Union[str, Path], *, db_path: Optional[str] = None) -> None:
        self.path = Path(path)
        self.db_path = db_path

    @classmethod
    def beside_database(cls, db_path: Union[str, Path], name: str) -> "PidLock":
        db = Path(db_path)
        return cls(db.parent / name, db_path=str(db))

    def holder(self) -> Optional[Dict[str, Any]]:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        return raw if isinstance(raw, dict) else None

    def _write_new(self, payload: Dict[str, Any]) -> None:
        with self.path.open("x", encoding="utf-8") as fh:
            json.dump(payload, fh)

    def acquire(self, owner: str, *, pid: Optional[int] = None) -> LockState:
        pid = os.getpid() if pid is None else int(pid)
        payload: Dict[str, Any] = {
            "pid": pid,
            "owner": owner,
            "db_path": self.db_path,
            "acquired_at": time.time(),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._write_new(payload)
            return LockState(True, holder=payload)
        except FileExistsError:
            pass
        except OSError as exc:
            return LockState(False, reason=f"lock_error:{exc}")

        current = self.holder() or {}
        current_pid = int(current.get("pid") or 0)
        if current_pid == pid:
            return LockState(True, holder=current)
        if pid_alive(current_pid):
            return LockState(False, reason="already_running", holder=current)

        self.path.unlink(missing_ok=True)
        try:
            self._write_new(payload)
        except OSError as exc:
            return LockState(False, reason=f"lock_error:{exc}")
        return LockState(True, holder=payload, recovered_from=current_pid or None)

    def release(self, *, pid: Optional[int] = None) -> bool:
        """Remove the file if ``pid`` (default: this process) holds it."""
        pid = os.getpid() if pid is None else int(pid)
        current = self.holder()
        if not current:
            return True
        if int(current.get("pid") or 0) not in (0, pid):
            return False
        try:
            self.path.unlink(missing_ok=True)
        except OSError:
            return False
        return True
