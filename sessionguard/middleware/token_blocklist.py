"""
In-memory revocation registry for JWT sessions.

Two maps are kept:

* blocked token ids -> the token's own ``exp``; an entry is dropped once the
  token would have expired anyway.
* user id -> invalidation timestamp; any token for that user issued before
  the timestamp is treated as revoked ("log out everywhere").

The store is constructed explicitly and injected into the application
(``app.state.token_blocklist``). State is lost on restart and is not shared
between processes; a multi-instance deployment needs a shared keyed cache.
"""
import hashlib
import json
import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

import structlog
from jose import JWTError, jwt

logger = structlog.get_logger()

INVALID_TOKEN_STRUCTURE = "INVALID_TOKEN_STRUCTURE"
TOKEN_BLOCKED = "TOKEN_BLOCKED"
TOKEN_INVALIDATED = "TOKEN_INVALIDATED"

SUBJECT_CLAIMS = ("sub", "userId", "id")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def token_identifier(claims: Mapping[str, Any]) -> str:
    """Return the ``jti`` claim, or a SHA-256 fingerprint of the canonical claims."""
    jti = claims.get("jti")
    if isinstance(jti, str) and jti:
        return jti

    canonical = json.dumps(claims, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def token_subject(claims: Mapping[str, Any]) -> Optional[str]:
    for claim in SUBJECT_CLAIMS:
        value = claims.get(claim)
        if value is not None and value != "" and not isinstance(value, bool):
            return str(value)
    return None


def _short(token_id: str) -> str:
    return f"{token_id[:8]}..."


@dataclass(frozen=True)
class RevocationDecision:
    allowed: bool
    reason: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def allow(cls) -> "RevocationDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str, message: str) -> "RevocationDecision":
        return cls(allowed=False, reason=reason, message=message)


class TokenBlocklist:
    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        user_invalidation_retention: Optional[float] = None,
    ):
        self._blocked_tokens: Dict[str, float] = {}  # token id -> exp
        self._user_invalidations: Dict[str, float] = {}  # user id -> invalidated at
        self._clock = clock
        self._user_invalidation_retention = user_invalidation_retention
        self._lock = threading.Lock()

    def block(self, token: Any) -> bool:
        """Block a raw JWT until its own expiry. Never raises; False means nothing was stored."""
        if not isinstance(token, str) or not token:
            logger.warning("token_block_rejected", reason="empty_token")
            return False

        if token.count(".") != 2:
            logger.warning("token_block_rejected", reason="malformed_token")
            return False

        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError:
            logger.warning("token_block_rejected", reason="malformed_token")
            return False

        exp = claims.get("exp")
        if not _is_number(exp) or not math.isfinite(exp):
            logger.warning("token_block_rejected", reason="missing_expiry")
            return False

        token_id = token_identifier(claims)
        if exp <= self._clock():
            logger.debug("token_block_skipped_expired", token_id=_short(token_id), expires_at=exp)
            return True

        with self._lock:
            self._blocked_tokens[token_id] = exp

        logger.info("token_blocked", token_id=_short(token_id), expires_at=exp)
        return True

    def invalidate_user(self, user_id: Any) -> None:
        """Revoke every token for ``user_id`` issued before now. Repeated calls overwrite."""
        # Whole seconds, like ``iat``: a token issued later in the same second stays valid.
        invalidated_at = int(self._clock())
        with self._lock:
            self._user_invalidations[str(user_id)] = invalidated_at

        logger.info("user_tokens_invalidated", user_id=str(user_id), invalidated_at=invalidated_at)

    def is_token_blocked(self, token_id: str) -> bool:
        with self._lock:
            exp = self._blocked_tokens.get(token_id)
            if exp is None:
                return False
            if exp <= self._clock():
                # Token has expired on its own; the signature check upstream rejects it.
                del self._blocked_tokens[token_id]
                return False
            return True

    def is_token_invalidated_for_user(self, user_id: str, issued_at: float) -> bool:
        with self._lock:
            invalidated_at = self._user_invalidations.get(user_id)
        if invalidated_at is None:
            return False
        return issued_at < invalidated_at

    def check(self, claims: Any) -> RevocationDecision:
        """Decide whether already-verified claims belong to a revoked session. Fails closed."""
        if not isinstance(claims, Mapping):
            return RevocationDecision.deny(INVALID_TOKEN_STRUCTURE, "Invalid token")

        user_id = token_subject(claims)
        issued_at = claims.get("iat")
        if user_id is None or not _is_number(issued_at):
            logger.warning("revocation_check_invalid_claims", has_subject=user_id is not None)
            return RevocationDecision.deny(INVALID_TOKEN_STRUCTURE, "Invalid token")

        try:
            token_id = token_identifier(claims)
        except (TypeError, ValueError):
            return RevocationDecision.deny(INVALID_TOKEN_STRUCTURE, "Invalid token")

        if self.is_token_blocked(token_id):
            logger.warning("revoked_token_rejected", reason=TOKEN_BLOCKED, user_id=user_id, token_id=_short(token_id))
            return RevocationDecision.deny(TOKEN_BLOCKED, "Your session has been revoked. Please login again.")

        if self.is_token_invalidated_for_user(user_id, issued_at):
            logger.warning("revoked_token_rejected", reason=TOKEN_INVALIDATED, user_id=user_id, issued_at=issued_at)
            return RevocationDecision.deny(
                TOKEN_INVALIDATED,
                "Your sessions have been invalidated. Please login again.",
            )

        return RevocationDecision.allow()

    def purge_expired(self) -> int:
        """Drop entries past their expiry (and markers past retention). Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [token_id for token_id, exp in self._blocked_tokens.items() if exp <= now]
            for token_id in expired:
                del self._blocked_tokens[token_id]

            stale_users = []
            if self._user_invalidation_retention is not None:
                cutoff = now - self._user_invalidation_retention
                stale_users = [
                    user_id for user_id, invalidated_at in self._user_invalidations.items()
                    if invalidated_at < cutoff
                ]
                for user_id in stale_users:
                    del self._user_invalidations[user_id]

        removed = len(expired) + len(stale_users)
        if removed:
            logger.info("token_blocklist_swept", tokens=len(expired), users=len(stale_users))
        return removed

    def stats(self) -> dict:
        with self._lock:
            return {
                "blockedTokensCount": len(self._blocked_tokens),
                "invalidatedUsersCount": len(self._user_invalidations),
            }

    def clear(self) -> None:
        """Empty both maps. Meant for tests and maintenance, not request handling."""
        with self._lock:
            self._blocked_tokens.clear()
            self._user_invalidations.clear()
        logger.info("token_blocklist_cleared")


def block_token(blocklist: TokenBlocklist, token: Any) -> bool:
    return blocklist.block(token)


def invalidate_user_tokens(blocklist: TokenBlocklist, user_id: Any) -> None:
    blocklist.invalidate_user(user_id)


def get_blocklist_stats(blocklist: TokenBlocklist) -> dict:
    return blocklist.stats()


def clear_blocklist(blocklist: TokenBlocklist) -> None:
    blocklist.clear()
