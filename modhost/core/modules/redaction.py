from __future__ import annotations

"""
Redaction helpers for module lifecycle event payloads.

WHY THIS FILE EXISTS:
Lifecycle events leave the manager and reach arbitrary subscribers. Payloads
are shaped through a strict allowlist so manifest `config` blocks, service
definitions or file contents never travel with them.
"""

from typing import Any, Dict


def redact_module_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Keep only safe, non-sensitive fields.
    """
    p = payload or {}
    allow = {
        "module",
        "module_path",
        "action",
        "state",
        "previous_state",
        "version",
        "previous_version",
        "reason",
        "error_code",
        "modules",
        "missing",
        "conflicts",
        "dependents",
        "store_revision",
        "checksum",
        "major_bump",
        "archived_to",
    }
    out: Dict[str, Any] = {}
    for k in allow:
        if k in p:
            out[k] = p.get(k)
    return out
