"""
Issuance ledger for onramp sessions.

Every entry is a JSONL line carrying a sequence number, the running count of
degraded sessions, and an HMAC over the previous entry's hash. Reads replay
the chain and refuse to return anything once a line was edited, removed or
reordered. Entries record who a session was for and whether it was
degraded; tokens and key material are never written.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import secrets
import threading
import time
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Optional


DEFAULT_LEDGER_PATH = Path.home() / ".onramp" / "issuance.jsonl"
DEFAULT_LEDGER_KEY_PATH = Path.home() / ".onramp-secrets" / "issuance_hmac.key"
LEDGER_HMAC_KEY_ENV = "ONRAMP_AUDIT_HMAC_KEY"

_CHAIN_FIELDS = {"prev_hash", "event_hash"}


class EventType(str, Enum):
    SESSION_ISSUED = "session_issued"
    SESSION_DEGRADED = "session_degraded"
    EXCHANGE_FAILED = "exchange_failed"
    URL_BUILT = "url_built"
    FALLBACK_VERIFIED = "fallback_verified"


@dataclass
class IssuanceEvent:
    """A single ledger entry."""

    seq: int
    event_type: str
    timestamp: float
    degraded_total: int
    wallet: Optional[str] = None
    token_id: Optional[str] = None
    degraded: Optional[bool] = None
    success: bool = True
    reason: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    prev_hash: Optional[str] = None
    event_hash: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: dict) -> "IssuanceEvent":
        return cls(**{k: v for k, v in raw.items() if k in cls.__dataclass_fields__})


@dataclass(frozen=True)
class _ChainHead:
    seq: int = 0
    event_hash: str = ""
    degraded_total: int = 0


class IssuanceLog:
    """Tamper-evident append-only log of issued sessions.

    ``degraded_total`` on each entry is the number of degraded sessions
    recorded up to and including it, so an operator can read the outage
    count off the last line and a reader can prove it against the chain.
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        key_path: Optional[Path] = None,
    ):
        self.path = path or DEFAULT_LEDGER_PATH
        self.key_path = key_path or DEFAULT_LEDGER_KEY_PATH
        self._lock = threading.Lock()

        for directory in {self.path.parent, self.key_path.parent}:
            _ensure_private_dir(directory)
        _ensure_private_file(self.path)
        _ensure_private_file(self.key_path)

        self._hmac_key = self._read_key()
        self._head = self._last_head()

    @property
    def degraded_total(self) -> int:
        return self._head.degraded_total

    def _read_key(self) -> bytes:
        env_key = os.getenv(LEDGER_HMAC_KEY_ENV)
        if env_key:
            return env_key.encode()
        stored = self.key_path.read_bytes().strip()
        if stored:
            return stored
        key = secrets.token_hex(32).encode()
        self.key_path.write_bytes(key)
        return key

    def _last_head(self) -> _ChainHead:
        last: Optional[dict] = None
        with open(self.path, "r") as f:
            for line in f:
                if line.strip():
                    last = json.loads(line)
        if last is None:
            return _ChainHead()
        return _ChainHead(
            seq=int(last.get("seq", 0)),
            event_hash=last.get("event_hash", ""),
            degraded_total=int(last.get("degraded_total", 0)),
        )

    def _sign(self, payload: dict, prev_hash: str) -> str:
        mac = hmac.new(self._hmac_key, digestmod=hashlib.sha256)
        mac.update(prev_hash.encode())
        mac.update(b"\x00")
        mac.update(json.dumps(payload, sort_keys=True, separators=(",", ":")).encode())
        return mac.hexdigest()

    def log(
        self,
        event_type: EventType,
        wallet: Optional[str] = None,
        token_id: Optional[str] = None,
        degraded: Optional[bool] = None,
        success: bool = True,
        reason: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> IssuanceEvent:
        """Append one entry. Blocks on fsync; call from a worker thread in async code."""
        with self._lock:
            head = self._head
            degraded_total = head.degraded_total + (event_type is EventType.SESSION_DEGRADED)
            fields = {
                "seq": head.seq + 1,
                "event_type": event_type.value,
                "timestamp": time.time(),
                "degraded_total": degraded_total,
                "wallet": wallet,
                "token_id": token_id,
                "degraded": degraded,
                "success": success,
                "reason": reason,
                "details": details,
            }
            payload = {k: v for k, v in fields.items() if v is not None}
            event_hash = self._sign(payload, head.event_hash)
            line = dict(payload, event_hash=event_hash)
            if head.event_hash:
                line["prev_hash"] = head.event_hash

            with open(self.path, "a") as f:
                f.write(json.dumps(line, separators=(",", ":")) + "\n")
                f.flush()
                os.fsync(f.fileno())
            self._head = _ChainHead(payload["seq"], event_hash, degraded_total)
        return IssuanceEvent.from_raw(line)

    def _replay(self) -> Iterator[dict]:
        """Yield raw entries in order, verifying the chain as it goes."""
        if not self.path.exists():
            return
        head = _ChainHead()
        with open(self.path, "r") as f:
            for line in f:
                if not line.strip():
                    continue
                raw = json.loads(line)
                payload = {k: v for k, v in raw.items() if k not in _CHAIN_FIELDS}

                if raw.get("seq") != head.seq + 1:
                    raise RuntimeError(
                        f"Issuance ledger broken: sequence gap after entry {head.seq}"
                    )
                if (raw.get("prev_hash") or "") != head.event_hash:
                    raise RuntimeError("Issuance ledger broken: previous hash mismatch")
                if not hmac.compare_digest(
                    self._sign(payload, head.event_hash), raw.get("event_hash") or ""
                ):
                    raise RuntimeError("Issuance ledger broken: event hash mismatch")

                expected_total = head.degraded_total + (
                    raw.get("event_type") == EventType.SESSION_DEGRADED.value
                )
                if raw.get("degraded_total") != expected_total:
                    raise RuntimeError("Issuance ledger broken: degraded total mismatch")

                head = _ChainHead(raw["seq"], raw["event_hash"], expected_total)
                yield raw

    def read_events(
        self,
        wallet: Optional[str] = None,
        event_type: Optional[EventType] = None,
        limit: int = 100,
    ) -> list[IssuanceEvent]:
        wanted_wallet = wallet.lower() if wallet else None
        events = [
            IssuanceEvent.from_raw(raw)
            for raw in self._replay()
            if (not wanted_wallet or (raw.get("wallet") or "").lower() == wanted_wallet)
            and (not event_type or raw.get("event_type") == event_type.value)
        ]
        return events[-limit:] if limit > 0 else events

    def summary(self) -> dict:
        by_type: dict[str, int] = {}
        total_events = 0
        degraded_total = 0
        last_degraded_at: Optional[float] = None
        for raw in self._replay():
            total_events += 1
            kind = raw["event_type"]
            by_type[kind] = by_type.get(kind, 0) + 1
            degraded_total = raw["degraded_total"]
            if kind == EventType.SESSION_DEGRADED.value:
                last_degraded_at = raw["timestamp"]

        sessions = by_type.get(EventType.SESSION_ISSUED.value, 0) + degraded_total
        return {
            "total_events": total_events,
            "by_type": by_type,
            "sessions": sessions,
            "degraded_sessions": degraded_total,
            "degraded_ratio": round(degraded_total / sessions, 4) if sessions else 0.0,
            "last_degraded_at": last_degraded_at,
        }


def _ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    os.chmod(path, 0o700)


def _ensure_private_file(path: Path) -> None:
    path.touch(exist_ok=True)
    os.chmod(path, 0o600)
