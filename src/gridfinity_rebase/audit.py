"""Decision log and phase checkpoints written next to a rebase run's artifacts.

Layout under ``artifacts_dir``::

    decision_log.jsonl          one record per orientation decision
    decision_hash_chain.json    chain summary written by ``finalize``
    checkpoints/phase_NN_<name>.json

Each decision record stores the hash of its predecessor; each checkpoint may
name the checkpoint it follows.  :func:`verify_decision_log` re-derives the
chain from disk.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64
DECISION_SCHEMA = "gridfinity_rebase.decision.v1"
CHECKPOINT_SCHEMA = "gridfinity_rebase.checkpoint.v1"
CHAIN_SCHEMA = "gridfinity_rebase.hash_chain.v1"


def canonical_json(payload: Dict[str, object]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _stamp() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


@dataclass
class CheckpointHandle:
    phase_index: int
    phase_name: str
    path: Path
    payload_sha256: str


@dataclass
class ChainLink:
    seq: int
    hash: str
    previous_hash: str


class AuditTrail:
    """Why a run chose each rotation, and what every phase produced."""

    def __init__(self, run_id: str, artifacts_dir: Path):
        self.run_id = run_id
        self.artifacts_dir = Path(artifacts_dir)
        self.checkpoints_dir = self.artifacts_dir / "checkpoints"
        self.checkpoints_dir.mkdir(parents=True, exist_ok=True)
        self.decision_log_path = self.artifacts_dir / "decision_log.jsonl"
        self.hash_chain_path = self.artifacts_dir / "decision_hash_chain.json"
        self._links: List[ChainLink] = []
        self._handles: List[CheckpointHandle] = []

    @property
    def head_hash(self) -> str:
        return self._links[-1].hash if self._links else GENESIS_HASH

    @property
    def checkpoints(self) -> List[CheckpointHandle]:
        return list(self._handles)

    def append_decision(
        self,
        *,
        phase_index: int,
        decision_type: str,
        role: str,
        alternatives: Sequence[Dict[str, object]],
        selected: str,
        reason_codes: Sequence[str],
        evidence: Optional[Dict[str, float]] = None,
    ) -> Dict[str, object]:
        """Append one decision about the *role* mesh ("subject"/"reference")."""
        record: Dict[str, object] = {
            "schema_version": DECISION_SCHEMA,
            "run_id": self.run_id,
            "seq": len(self._links) + 1,
            "timestamp_utc": _stamp(),
            "phase_index": int(phase_index),
            "decision_type": decision_type,
            "role": role,
            "alternatives": [dict(a) for a in alternatives],
            "selected": selected,
            "reason_codes": list(reason_codes),
            "evidence": dict(evidence or {}),
            "previous_hash": self.head_hash,
        }
        record["hash"] = sha256_text(canonical_json(record))

        with self.decision_log_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record, sort_keys=True) + "\n")
        self._links.append(
            ChainLink(
                seq=int(record["seq"]),
                hash=str(record["hash"]),
                previous_hash=str(record["previous_hash"]),
            )
        )
        logger.debug("%s decision #%d: %s", role, record["seq"], selected)
        return record

    def write_checkpoint(
        self,
        phase_index: int,
        phase_name: str,
        *,
        counts: Dict[str, int],
        metrics: Optional[Dict[str, float]] = None,
        invariants: Optional[Dict[str, object]] = None,
        outputs: Optional[Dict[str, object]] = None,
        input_hashes: Optional[Dict[str, str]] = None,
        previous: Optional[CheckpointHandle] = None,
    ) -> CheckpointHandle:
        """Write ``phase_NN_<name>.json``; *previous* links it to the last phase."""
        hashes = dict(input_hashes or {})
        if previous is not None:
            hashes["prev_checkpoint_sha256"] = previous.payload_sha256
        payload: Dict[str, object] = {
            "schema_version": CHECKPOINT_SCHEMA,
            "run_id": self.run_id,
            "phase_index": int(phase_index),
            "phase_name": phase_name,
            "timestamp_utc": _stamp(),
            "input_hashes": hashes,
            "invariants": invariants or {},
            "counts": counts,
            "metrics": metrics or {},
            "outputs": outputs or {},
        }
        digest = sha256_text(canonical_json(payload))
        payload["payload_sha256"] = digest

        path = self.checkpoints_dir / f"phase_{phase_index:02d}_{phase_name}.json"
        path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        handle = CheckpointHandle(phase_index, phase_name, path, digest)
        self._handles.append(handle)
        return handle

    def finalize(self) -> Path:
        summary = {
            "schema_version": CHAIN_SCHEMA,
            "run_id": self.run_id,
            "final_hash": self.head_hash,
            "decision_count": len(self._links),
            "entries": [asdict(link) for link in self._links],
            "checkpoint_hashes": [
                {
                    "phase_index": h.phase_index,
                    "phase_name": h.phase_name,
                    "path": str(h.path),
                    "payload_sha256": h.payload_sha256,
                }
                for h in self._handles
            ],
        }
        self.hash_chain_path.write_text(
            json.dumps(summary, indent=2, sort_keys=True), encoding="utf-8"
        )
        return self.hash_chain_path


def verify_decision_log(decision_log_path: Path) -> str:
    """Recompute the chain of a decision log and return its final hash.

    Raises ``ValueError`` naming the first record whose hash or back-link
    does not match.
    """
    previous = GENESIS_HASH
    path = Path(decision_log_path)
    if not path.exists():
        return previous
    for line_no, line in enumerate(path.read_text(encoding="utf-8").splitlines(), 1):
        if not line.strip():
            continue
        record = json.loads(line)
        claimed = record.pop("hash", None)
        if record.get("previous_hash") != previous:
            raise ValueError(f"decision log line {line_no}: broken back-link")
        if sha256_text(canonical_json(record)) != claimed:
            raise ValueError(f"decision log line {line_no}: hash mismatch")
        previous = claimed
    return previous
