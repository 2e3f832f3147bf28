# SPDX-License-Identifier: Apache-2.0
"""Local append-only audit log with chained SHA3-256 hashes."""
from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from healthtab.config import INITIAL_HASH, settings


def sha3_256_hex(*parts: bytes | str) -> str:
    """SHA3-256 hash of concatenated parts, hex-encoded."""
    h = hashlib.sha3_256()
    for p in parts:
        h.update(p.encode("utf-8") if isinstance(p, str) else p)
    return h.hexdigest()


def _last_entry_hash(path: Path) -> str:
    if not path.exists():
        return INITIAL_HASH
    last = ""
    with open(path, encoding="utf-8") as f:
        for line in f:
            if line.strip():
                last = line
    if not last:
        return INITIAL_HASH
    return json.loads(last).get("entry_hash", INITIAL_HASH)


def write_audit_log(action: str, details: dict[str, Any], path: str | Path | None = None) -> str | None:
    """
    Appends one entry: entry_hash = SHA3-256(payload_json || previous_hash).
    Returns the entry hash, or None when no log is configured.
    Callers must never pass plaintext, passphrases or key material in details.
    """
    if path is None:
        path = settings.audit_log_path
    if path is None:
        return None
    path = Path(path)
    previous_hash = _last_entry_hash(path)
    payload = {
        "action": action,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "details": details,
    }
    payload_str = json.dumps(payload, sort_keys=True, default=str)
    entry_hash = sha3_256_hex(payload_str, previous_hash)
    with open(path, "a", encoding="utf-8") as f:
        f.write(
            json.dumps(
                {"payload": json.loads(payload_str), "previous_hash": previous_hash, "entry_hash": entry_hash},
                sort_keys=True,
            )
            + "\n"
        )
    return entry_hash


def verify_audit_log(path: str | Path) -> dict[str, Any]:
    """Recomputes every entry hash and checks the previous_hash chain."""
    path = Path(path)
    if not path.exists():
        return {"chain_valid": False, "anomalies": [f"Audit log not found: {path}"], "total_entries": 0}
    anomalies: list[str] = []
    prev_hash = INITIAL_HASH
    total = 0
    with open(path, encoding="utf-8") as f:
        for i, line in enumerate(ln for ln in f if ln.strip()):
            total += 1
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                anomalies.append(f"Entry {i}: not valid JSON.")
                continue
            previous_hash = entry.get("previous_hash", "")
            if previous_hash != prev_hash:
                anomalies.append(f"Entry {i}: previous_hash does not match the preceding entry_hash.")
            payload_str = json.dumps(entry.get("payload", {}), sort_keys=True)
            if entry.get("entry_hash") != sha3_256_hex(payload_str, previous_hash):
                anomalies.append(f"Entry {i}: entry_hash does not match the recomputed hash.")
            prev_hash = entry.get("entry_hash", "")
    return {"chain_valid": not anomalies, "anomalies": anomalies, "total_entries": total}
