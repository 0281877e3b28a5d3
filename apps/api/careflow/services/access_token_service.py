"""Patient magic-link tokens.

A token lives on the care plan row (access_token + access_token_expires_at).
Unknown, expired and deleted-plan tokens are indistinguishable to callers.
"""

import logging
import secrets
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from careflow.core.config import settings
from careflow.core.errors import TokenInvalid
from careflow.db.models import CarePlan
from careflow.db.types import utcnow

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32  # 256 bits, 64 hex chars


# =============================================================================
# Failure throttle
# =============================================================================

@dataclass
class _FailureState:
    attempts: int = 0
    locked_until: datetime | None = None
    window_started: datetime | None = None


@dataclass
class TokenFailureThrottle:
    """
    Per-client failed lookup counter.

    After `limit` failures within `lockout` the client is locked out for
    `lockout`; validations short-circuit without a database lookup.
    Entries whose window and lock have both lapsed are swept at most once
    per `lockout`, so one-off failures from many clients do not accumulate.
    """

    limit: int
    lockout: timedelta
    _state: dict[str, _FailureState] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)
    _last_sweep: datetime | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._state)

    def _expired(self, state: _FailureState, now: datetime) -> bool:
        if state.locked_until and now < state.locked_until:
            return False
        return state.window_started is None or now - state.window_started > self.lockout

    def _sweep(self, now: datetime) -> None:
        # caller holds self._lock
        if self._last_sweep and now - self._last_sweep < self.lockout:
            return
        self._last_sweep = now
        stale = [key for key, state in self._state.items() if self._expired(state, now)]
        for key in stale:
            del self._state[key]
        if stale:
            logger.debug(f"Swept {len(stale)} lapsed token failure entries")

    def is_locked(self, key: str, now: datetime) -> bool:
        with self._lock:
            self._sweep(now)
            state = self._state.get(key)
            if not state or not state.locked_until:
                return False
            if now < state.locked_until:
                return True
            self._state.pop(key, None)
            return False

    def record_failure(self, key: str, now: datetime) -> None:
        with self._lock:
            self._sweep(now)
            state = self._state.setdefault(key, _FailureState())
            if state.window_started is None or now - state.window_started > self.lockout:
                state.attempts = 0
                state.window_started = now
            state.attempts += 1
            if state.attempts >= self.limit:
                state.locked_until = now + self.lockout
                logger.warning(f"Access token lookups locked for client after {state.attempts} failures")

    def clear(self, key: str) -> None:
        with self._lock:
            self._state.pop(key, None)

    def reset(self) -> None:
        with self._lock:
            self._state.clear()
            self._last_sweep = None


failure_throttle = TokenFailureThrottle(
    limit=settings.TOKEN_FAILURE_LIMIT,
    lockout=timedelta(minutes=settings.TOKEN_LOCKOUT_MINUTES),
)


# =============================================================================
# Issue / validate
# =============================================================================

def generate_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def issue(now: datetime | None = None) -> tuple[str, datetime]:
    """
    Mint a fresh (token, expires_at) pair.

    Writing it onto the plan replaces (invalidates) any prior token; the
    care plan service does that inside its send transition.
    """
    now = now or utcnow()
    return generate_token(), now + timedelta(days=settings.ACCESS_TOKEN_TTL_DAYS)


def validate(
    db: Session,
    token: str,
    client_key: str | None = None,
    now: datetime | None = None,
) -> CarePlan:
    """
    Resolve a token to its care plan.

    Raises:
        TokenInvalid: unknown, expired or throttled (same message for all)
    """
    now = now or utcnow()
    key = client_key or "anonymous"

    if failure_throttle.is_locked(key, now):
        raise TokenInvalid()

    plan = None
    if token and len(token) == TOKEN_BYTES * 2:
        plan = db.execute(
            select(CarePlan).where(CarePlan.access_token == token)
        ).scalar_one_or_none()

    if (
        plan is None
        or plan.access_token_expires_at is None
        or now >= plan.access_token_expires_at
    ):
        failure_throttle.record_failure(key, now)
        raise TokenInvalid()

    failure_throttle.clear(key)
    return plan


def build_patient_link(token: str) -> str:
    """Patient-facing URL for a token."""
    return f"{settings.FRONTEND_URL.rstrip('/')}/patient/{token}"
