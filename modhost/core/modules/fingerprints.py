from __future__ import annotations

"""
Fingerprint utilities for the compiled registry.

WHY THIS FILE EXISTS:
The compiled registry must be able to tell whether it still reflects disk +
state-store without re-parsing manifests. The generation checksum is derived
from manifest file metadata (never contents) plus the state-store revision.
"""

import hashlib
import json
import os
from typing import Iterable, List, Tuple


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def list_manifest_entries(modules_root: str, manifest_filename: str) -> List[Tuple[str, int, int]]:
    """
    Return (module_dir_name, manifest_mtime_ns, manifest_size) for every candidate module folder.
    Folders without a manifest are included with (0, 0) so that adding one changes the fingerprint.
    """
    out: List[Tuple[str, int, int]] = []
    if not os.path.isdir(modules_root):
        return out
    for name in sorted(os.listdir(modules_root)):
        if name.startswith(".") or name.startswith("_"):
            continue
        mod_dir = os.path.join(modules_root, name)
        if not os.path.isdir(mod_dir):
            continue
        try:
            st = os.stat(os.path.join(mod_dir, manifest_filename))
            out.append((name, int(st.st_mtime_ns), int(st.st_size)))
        except OSError:
            out.append((name, 0, 0))
    return out


def generation_checksum(*, manifest_entries: Iterable[Tuple[str, int, int]], store_revision: int) -> str:
    payload = {
        "manifests": [{"module": n, "mtime_ns": int(m), "size": int(s)} for (n, m, s) in sorted(manifest_entries)],
        "store_revision": int(store_revision),
    }
    blob = json.dumps(payload, ensure_ascii=False, sort_keys=True).encode("utf-8")
    return sha256_hex(blob)


def current_checksum(*, modules_root: str, manifest_filename: str, store_revision: int) -> str:
    return generation_checksum(
        manifest_entries=list_manifest_entries(modules_root, manifest_filename),
        store_revision=store_revision,
    )
