from __future__ import annotations

import json
import os
import shutil
import tempfile
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class ReadResult:
    ok: bool
    data: Dict[str, Any]
    error: Optional[str] = None
    was_recovered: bool = False


def _ts() -> str:
    return time.strftime("%Y%m%d_%H%M%S", time.gmtime())


def ensure_dirs(*dirs: str) -> None:
    for d in dirs:
        if d:
            os.makedirs(d, exist_ok=True)


def read_json_file(path: str) -> ReadResult:
    if not os.path.exists(path):
        return ReadResult(ok=False, data={}, error="missing")
    try:
        with open(path, "r", encoding="utf-8") as f:
            obj = json.load(f)
        if not isinstance(obj, dict):
            return ReadResult(ok=False, data={}, error="not_object")
        return ReadResult(ok=True, data=obj)
    except json.JSONDecodeError as e:
        return ReadResult(ok=False, data={}, error=f"corrupt_json:{e}")
    except OSError as e:
        return ReadResult(ok=False, data={}, error=str(e))


def backup_file(path: str, backups_dir: str, *, reason: str, max_backups: int = 10) -> Optional[str]:
    if not os.path.exists(path) or max_backups <= 0:
        return None
    ensure_dirs(backups_dir)
    base = os.path.basename(path)
    out = os.path.join(backups_dir, f"{base}.{_ts()}.{time.time_ns()}.{reason}.json")
    try:
        shutil.copy2(path, out)
    except OSError:
        return None
    # retention per file
    try:
        prefix = f"{base}."
        items = [os.path.join(backups_dir, f) for f in os.listdir(backups_dir) if f.startswith(prefix)]
        items.sort(key=lambda p: os.path.getmtime(p), reverse=True)
        for p in items[max_backups:]:
            try:
                os.remove(p)
            except OSError:
                pass
    except OSError:
        pass
    return out


def atomic_write_json(path: str, data: Dict[str, Any], backups_dir: Optional[str] = None, *, max_backups: int = 10) -> None:
    """
    Write-new-then-rename: readers see either the previous file or the new one, never a partial write.
    """
    ensure_dirs(os.path.dirname(path))
    if backups_dir:
        backup_file(path, backups_dir, reason="prewrite", max_backups=max_backups)
    fd, tmp = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=os.path.dirname(path) or ".")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, sort_keys=True)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    finally:
        try:
            if os.path.exists(tmp):
                os.remove(tmp)
        except OSError:
            pass


def snapshot_last_known_good(path: str, last_known_good_path: str) -> None:
    if not os.path.exists(path):
        return
    ensure_dirs(os.path.dirname(last_known_good_path))
    try:
        shutil.copy2(path, last_known_good_path)
    except OSError:
        pass


def recover_from_corrupt(path: str, backups_dir: str, last_known_good_path: str, *, max_backups: int = 10) -> Tuple[Dict[str, Any], bool]:
    """
    On corrupt JSON:
    - move corrupt file to backups/<name>.<ts>.corrupt.json
    - try restore from the last-known-good copy
    Returns (data, recovered)
    """
    ensure_dirs(backups_dir)
    if os.path.exists(path):
        try:
            base = os.path.basename(path)
            shutil.move(path, os.path.join(backups_dir, f"{base}.{_ts()}.corrupt.json"))
        except OSError:
            pass
    rr = read_json_file(last_known_good_path)
    if rr.ok:
        atomic_write_json(path, rr.data, backups_dir, max_backups=max_backups)
        return rr.data, True
    return {}, False
