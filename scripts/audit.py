"""Signed audit trail for provisioning, deprovisioning and activation.

Each event is one JSON line in ``AUDIT_LOG_DIR/provisioning-events.jsonl``.
When a signing key is available (``/run/secrets/audit_log_signing_key`` or
``AUDIT_LOG_SIGNING_KEY``) the line carries an HMAC-SHA256 ``signature``
over the canonical JSON of every other field.

Verify a trail from the shell::

    python -m scripts.audit --verify
    python -m scripts.audit --type reconciliation_required
"""

from __future__ import annotations
import argparse
import datetime
import hashlib
import hmac
import json
import logging
import os
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Literal, Optional

logger = logging.getLogger(__name__)

AUDIT_LOG_DIR = Path(os.environ.get("AUDIT_LOG_DIR", ".runtime/audit"))
AUDIT_LOG_FILE = AUDIT_LOG_DIR / "provisioning-events.jsonl"
_SECRET_FILE = Path("/run/secrets/audit_log_signing_key")

EventType = Literal[
    "joiner",
    "leaver",
    "mover",
    "activation",
    "activation_reset",
    "activation_resent",
    # compensation failed; local table and Keycloak disagree
    "reconciliation_required",
]


def configure(log_dir: str | Path) -> None:
    """Point the audit trail at another directory (settings override the env default)."""
    global AUDIT_LOG_DIR, AUDIT_LOG_FILE
    AUDIT_LOG_DIR = Path(log_dir)
    AUDIT_LOG_FILE = AUDIT_LOG_DIR / "provisioning-events.jsonl"


@dataclass
class AuditEvent:
    event_type: str
    subject: str
    operator: str = "system"
    realm: str = "demo"
    success: bool = True
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc).isoformat()
    )

    def to_record(self, key: bytes) -> dict[str, Any]:
        record = asdict(self)
        if key:
            record["signature"] = _signature(record, key)
        return record


def _signing_key() -> bytes:
    # Read on every write so a secret mounted after import is still picked up
    if _SECRET_FILE.is_file():
        try:
            return _SECRET_FILE.read_text(encoding="utf-8").strip().encode("utf-8")
        except OSError as exc:
            logger.warning("Cannot read audit signing key %s: %s", _SECRET_FILE, exc)
    return os.environ.get("AUDIT_LOG_SIGNING_KEY", "").strip().encode("utf-8")


def _signature(record: dict[str, Any], key: bytes) -> str:
    canonical = json.dumps(record, sort_keys=True, separators=(",", ":"), default=str)
    return hmac.new(key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()


def _append(record: dict[str, Any]) -> None:
    AUDIT_LOG_DIR.mkdir(parents=True, exist_ok=True)
    AUDIT_LOG_DIR.chmod(0o700)
    with AUDIT_LOG_FILE.open("a", encoding="utf-8") as fh:
        fh.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
    AUDIT_LOG_FILE.chmod(0o600)


def log_event(
    event_type: EventType,
    subject: str,
    *,
    operator: str = "system",
    realm: str = "demo",
    details: Optional[dict[str, Any]] = None,
    success: bool = True,
) -> None:
    """Append one event to the trail.

    Args:
        event_type: joiner, leaver, mover, activation, ...
        subject: Username or account id the event is about
        operator: "cli", "api", "scheduler", "self-service" or an operator name
        realm: Keycloak realm of the identity
        details: Ids, roles, error text
        success: False for failed or compensated operations

    Raises:
        OSError: If the trail cannot be written
    """
    event = AuditEvent(
        event_type=event_type,
        subject=subject,
        operator=operator,
        realm=realm,
        success=success,
        details=details or {},
    )
    _append(event.to_record(_signing_key()))


def safe_log_event(event_type: EventType, subject: str, **kwargs: Any) -> bool:
    """``log_event`` for call sites where auditing must never break the operation.

    Returns False (and logs a warning) when the event could not be written.
    """
    try:
        log_event(event_type, subject, **kwargs)
    except Exception as exc:
        logger.warning("Failed to write %s audit event for %s: %s", event_type, subject, exc)
        return False
    return True


def read_events(event_type: Optional[str] = None) -> list[dict[str, Any]]:
    """Events in write order, optionally only one type. Corrupt lines are skipped."""
    if not AUDIT_LOG_FILE.exists():
        return []
    events = []
    with AUDIT_LOG_FILE.open("r", encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            if not line.strip():
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Skipping corrupt audit line %d in %s", lineno, AUDIT_LOG_FILE)
                continue
            if event_type is None or event.get("event_type") == event_type:
                events.append(event)
    return events


def verify_audit_log() -> tuple[int, int]:
    """Returns (events, events whose signature matches the current key)."""
    key = _signing_key()
    events = read_events()
    valid = 0
    for event in events:
        stored = event.pop("signature", "")
        if stored and key and hmac.compare_digest(stored, _signature(event, key)):
            valid += 1
    return len(events), valid


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Inspect the provisioning audit trail")
    parser.add_argument("--verify", action="store_true", help="Check every signature")
    parser.add_argument("--type", dest="event_type", default=None, help="Only print events of this type")
    args = parser.parse_args(argv)

    if args.verify:
        total, valid = verify_audit_log()
        print(f"[audit] {valid}/{total} events with valid signatures")
        return 0 if total == valid else 1

    for event in read_events(args.event_type):
        print(json.dumps(event, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
