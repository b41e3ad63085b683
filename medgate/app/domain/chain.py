"""Hash chaining for the decision log."""
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .models import DecisionRecord


def canonical_bytes(data: Mapping[str, Any]) -> bytes:
    """Serialize data with deterministic ordering for hashing."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")


def compute_chain_hash(payload: Mapping[str, Any], prev_hash_hex: Optional[str]) -> str:
    hasher = hashlib.sha256()
    hasher.update(canonical_bytes(payload))
    if prev_hash_hex:
        hasher.update(bytes.fromhex(prev_hash_hex))
    return hasher.hexdigest()


def decision_payload(record: DecisionRecord) -> Dict[str, Any]:
    return {
        "created_at": record.created_at.isoformat(),
        "category": _value(record.category),
        "subject_id": record.subject_id,
        "role": record.role,
        "verb": record.verb,
        "resource_type": record.resource_type,
        "resource_id": record.resource_id,
        "outcome": _value(record.outcome),
        "reason": record.reason,
    }


def seal(record: DecisionRecord, prev_hash: Optional[str]) -> DecisionRecord:
    record.prev_hash = prev_hash
    record.curr_hash = compute_chain_hash(decision_payload(record), prev_hash)
    return record


@dataclass
class ChainReport:
    checked: int = 0
    problems: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.problems


def verify_chain(records: Iterable[DecisionRecord]) -> ChainReport:
    """Recompute every hash in order and report broken links."""
    report = ChainReport()
    prev: Optional[str] = None
    for record in records:
        label = record.id if record.id is not None else report.checked
        if record.prev_hash != prev:
            report.problems.append(f"record[{label}].prev_hash mismatch")
        expected = compute_chain_hash(decision_payload(record), record.prev_hash)
        if record.curr_hash != expected:
            report.problems.append(f"record[{label}].curr_hash mismatch")
        prev = record.curr_hash
        report.checked += 1
    return report


def _value(member: Any) -> Any:
    return getattr(member, "value", member)
