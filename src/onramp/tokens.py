"""Session token returned by the exchange or the fallback issuer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class SessionToken:
    """Opaque credential for one onramp widget session.

    Provider tokens carry no introspectable claims. Degraded (fallback)
    tokens expose their decoded claims and must never be treated as
    provider-authoritative.
    """

    value: str = field(repr=False)
    degraded: bool
    issued_at: float
    expires_at: Optional[float] = None
    token_id: Optional[str] = None
    channel_id: Optional[str] = None
    claims: Optional[dict[str, Any]] = field(default=None, repr=False)

    def __post_init__(self):
        if not self.value:
            raise ValueError("Session token value cannot be empty")

    def to_dict(self) -> dict:
        return {
            "degraded": self.degraded,
            "issued_at": self.issued_at,
            "expires_at": self.expires_at,
            "token_id": self.token_id,
            "channel_id": self.channel_id,
        }
