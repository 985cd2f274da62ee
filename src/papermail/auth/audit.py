"""Tamper-evident audit trail for credential lifecycle events.

Events never contain token material. User identifiers and mailbox addresses
are reduced to short SHA-256 digests before they are written.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from hashlib import sha256
from pathlib import Path
from typing import Dict, Iterable, Optional

logger = logging.getLogger(__name__)


def identifier_hash(value: str) -> str:
    """Short stable digest used in place of identifiers in logs and audits."""
    return sha256(value.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class AuditEvent:
    """Represents a structured audit event."""

    action: str
    status: str
    timestamp: datetime
    user_hash: Optional[str] = None
    email_hash: Optional[str] = None
    provider: Optional[str] = None
    metadata: Dict[str, object] = field(default_factory=dict)

    @classmethod
    def for_user(
        cls,
        *,
        action: str,
        status: str,
        user_id: str,
        email_address: Optional[str] = None,
        provider: Optional[str] = None,
        metadata: Optional[Dict[str, object]] = None,
    ) -> "AuditEvent":
        return cls(
            action=action,
            status=status,
            timestamp=datetime.now(timezone.utc),
            user_hash=identifier_hash(user_id),
            email_hash=identifier_hash(email_address) if email_address else None,
            provider=provider,
            metadata=metadata or {},
        )

    def to_payload(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "action": self.action,
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.user_hash:
            payload["user_hash"] = self.user_hash
        if self.email_hash:
            payload["email_hash"] = self.email_hash
        if self.provider:
            payload["provider"] = self.provider
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload


@dataclass
class AuditLogger:
    """Writes an append-only, hash-chained audit log.

    Attributes:
        output_dir: Directory for audit log files
        filename: Name of the main audit log file
        max_bytes: Maximum log file size before rotation
        manifest_name: Name of the manifest file holding the chain head
    """

    output_dir: Path
    filename: str = "credentials.log"
    max_bytes: int = 5 * 1024 * 1024
    manifest_name: str = "credentials_manifest.json"

    def __post_init__(self) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._path = self.output_dir / self.filename
        self._manifest_path = self.output_dir / self.manifest_name
        if not self._manifest_path.exists():
            self._save_manifest({"last_hash": None, "rotated": []})

    def record(self, event: AuditEvent) -> None:
        payload = self._augment_with_chain(event.to_payload())
        with self._path.open("a", encoding="utf-8") as fp:
            fp.write(json.dumps(payload, separators=(",", ":")) + "\n")
        self._rotate_if_needed()

    def iter_events(self, *, path: Optional[Path] = None) -> Iterable[Dict[str, object]]:
        target = path or self._path
        if not target.exists():
            return
        with target.open("r", encoding="utf-8") as fp:
            for line in fp:
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Failed to parse audit line as JSON")

    def verify(self) -> bool:
        """Verify the hash chain of the current log file.

        Returns:
            True if the chain is intact, False if an entry was altered
        """
        previous_hash = self._load_manifest().get("chain_start")
        for entry in self.iter_events():
            if entry.get("chain_prev") != previous_hash:
                return False
            if entry.get("chain_hash") != _compute_chain_hash(entry):
                return False
            previous_hash = entry.get("chain_hash")
        return True

    def _augment_with_chain(self, payload: Dict[str, object]) -> Dict[str, object]:
        manifest = self._load_manifest()
        previous_hash = manifest.get("last_hash")
        if not self._path.exists():
            manifest["chain_start"] = previous_hash
        augmented = dict(payload)
        augmented["chain_prev"] = previous_hash
        augmented["chain_hash"] = _compute_chain_hash(augmented)
        manifest["last_hash"] = augmented["chain_hash"]
        self._save_manifest(manifest)
        return augmented

    def _rotate_if_needed(self) -> None:
        if not self._path.exists() or self._path.stat().st_size < self.max_bytes:
            return
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        rotated_name = self.output_dir / f"credentials-{timestamp}.log"
        os.replace(self._path, rotated_name)
        manifest = self._load_manifest()
        rotated = list(manifest.get("rotated", []))
        rotated.append({"path": rotated_name.name, "hash": manifest.get("last_hash")})
        manifest["rotated"] = rotated
        self._save_manifest(manifest)

    def _load_manifest(self) -> Dict[str, object]:
        return json.loads(self._manifest_path.read_text())

    def _save_manifest(self, manifest: Dict[str, object]) -> None:
        self._manifest_path.write_text(json.dumps(manifest, indent=2))


def _compute_chain_hash(payload: Dict[str, object]) -> str:
    canonical = json.dumps(
        {k: payload[k] for k in sorted(payload) if k != "chain_hash"},
        separators=(",", ":"),
    )
    return sha256(canonical.encode("utf-8")).hexdigest()


__all__ = ["AuditEvent", "AuditLogger", "identifier_hash"]
