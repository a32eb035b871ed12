# services/rate_limiter.py
"""
Policy layer over the rate limit store.

An action is limited along one or more identity dimensions at once (user id, client
IP, device cookie, email). Each dimension becomes its own bucket key
`rl:{action}:{scope}:{identifier}`; all buckets are consumed in parallel and the
request is rejected if any of them is over its rule.
"""
import hashlib
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, List, Optional

from services import rate_limit_store
from utils.errors import RateLimitExceeded, RateLimiterUnavailable

logger = logging.getLogger(__name__)

MAX_KEY_PART_LENGTH = 160
HASHED_KEY_PART_LENGTH = 48
_UNSAFE_KEY_CHARS = re.compile(r"[^a-z0-9:._-]")


@dataclass(frozen=True)
class RateLimitRule:
    max_requests: int
    window_ms: int

    @property
    def normalized_max_requests(self) -> int:
        return max(1, int(self.max_requests or 0))

    @property
    def window_seconds(self) -> int:
        return max(1, max(1000, int(self.window_ms or 0)) // 1000)


@dataclass(frozen=True)
class RateLimitTarget:
    scope: str
    identifier: str
    rule: RateLimitRule
    hash_identifier: bool = False


@dataclass(frozen=True)
class ActionPolicy:
    action: str
    message: str
    user: RateLimitRule
    ip: RateLimitRule


def _per_minute(n: int) -> RateLimitRule:
    return RateLimitRule(max_requests=n, window_ms=60_000)


ACTION_RATE_LIMITS = {
    "check_username": ActionPolicy("dashboard-check-username", "Too many username checks.", _per_minute(15), _per_minute(45)),
    "update_profile": ActionPolicy("dashboard-update-profile", "Too many profile updates.", _per_minute(8), _per_minute(24)),
    "create_vehicle": ActionPolicy("dashboard-create-vehicle", "Too many vehicle create requests.", _per_minute(12), _per_minute(40)),
    "update_vehicle": ActionPolicy("dashboard-update-vehicle", "Too many vehicle update requests.", _per_minute(20), _per_minute(60)),
    "move_vehicle": ActionPolicy("dashboard-move-vehicle", "Too many vehicle reorder requests.", _per_minute(30), _per_minute(90)),
    "delete_vehicle": ActionPolicy("dashboard-delete-vehicle", "Too many vehicle delete requests.", _per_minute(10), _per_minute(30)),
    "create_mod": ActionPolicy("dashboard-create-mod", "Too many mod create requests.", _per_minute(20), _per_minute(60)),
    "update_mod": ActionPolicy("dashboard-update-mod", "Too many mod update requests.", _per_minute(25), _per_minute(75)),
    "move_mod": ActionPolicy("dashboard-move-mod", "Too many mod reorder requests.", _per_minute(40), _per_minute(120)),
    "delete_mod": ActionPolicy("dashboard-delete-mod", "Too many mod delete requests.", _per_minute(15), _per_minute(45)),
    "upload_image": ActionPolicy("dashboard-upload-image", "Too many image uploads.", _per_minute(8), _per_minute(24)),
    "delete_image": ActionPolicy("dashboard-delete-image", "Too many image delete requests.", _per_minute(25), _per_minute(75)),
}

AUTH_START_LIMITS = {
    "ip": _per_minute(8),
    "identifier": RateLimitRule(max_requests=20, window_ms=10 * 60_000),
    "email": RateLimitRule(max_requests=5, window_ms=10 * 60_000),
}
AUTH_VERIFY_LIMITS = {
    "ip": _per_minute(20),
    "email": RateLimitRule(max_requests=10, window_ms=10 * 60_000),
}


# ───────────── keys ────────────────────────────────────────────────────────────
def normalize_key_part(value: Optional[str], fallback: str) -> str:
    normalized = _UNSAFE_KEY_CHARS.sub("_", (value or "").strip().lower())
    return normalized[:MAX_KEY_PART_LENGTH] if normalized else fallback


def hash_key_part(value: Optional[str]) -> str:
    normalized = (value or "").strip().lower()
    if not normalized:
        return "unknown"
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:HASHED_KEY_PART_LENGTH]


def bucket_key(action: str, target: RateLimitTarget) -> str:
    identifier = (
        hash_key_part(target.identifier)
        if target.hash_identifier
        else normalize_key_part(target.identifier, "unknown")
    )
    return f"rl:{normalize_key_part(action, 'action')}:{normalize_key_part(target.scope, 'scope')}:{identifier}"


# ───────────── enforcement ─────────────────────────────────────────────────────
def _consume(key: str, rule: RateLimitRule):
    return rate_limit_store.consume(key, rule.normalized_max_requests, rule.window_seconds)


def enforce(action: str, targets: Iterable[RateLimitTarget], message: str = "Too many requests.") -> None:
    """Consume every target; raise RateLimitExceeded if any is over its limit.

    Store failures raise RateLimiterUnavailable so callers can fail closed.
    """
    targets: List[RateLimitTarget] = list(targets)
    if not targets:
        return

    keys = [bucket_key(action, t) for t in targets]
    try:
        with ThreadPoolExecutor(max_workers=len(targets)) as pool:
            results = list(pool.map(_consume, keys, [t.rule for t in targets]))
    except Exception as e:
        # any store fault, not only driver errors, must fail closed
        logger.exception("Rate limit backend unavailable for action=%s", action)
        raise RateLimiterUnavailable("Rate-limit backend unavailable.") from e

    blocked = [r for r in results if not r.allowed]
    if not blocked:
        return

    retry_after = max([1] + [r.retry_after_seconds for r in blocked])
    logger.info("Rate limited action=%s keys=%s retry_after=%ss", action, keys, retry_after)
    raise RateLimitExceeded(retry_after, message)


def enforce_user_action(name: str, user_id, ip_address: Optional[str]) -> None:
    """Composite limit for an authenticated dashboard action: per user AND per client IP."""
    policy = ACTION_RATE_LIMITS[name]
    enforce(
        policy.action,
        [
            RateLimitTarget("user", str(user_id), policy.user),
            RateLimitTarget("ip", (ip_address or "").strip() or "unknown", policy.ip),
        ],
        message=policy.message,
    )


def enforce_auth_start(ip_address: str, device_identifier: str, email: str) -> None:
    enforce(
        "auth-start-otp",
        [
            RateLimitTarget("ip", ip_address, AUTH_START_LIMITS["ip"]),
            RateLimitTarget("identifier", device_identifier, AUTH_START_LIMITS["identifier"], hash_identifier=True),
            RateLimitTarget("email", email, AUTH_START_LIMITS["email"], hash_identifier=True),
        ],
        message="Too many sign-in attempts.",
    )


def enforce_auth_verify(ip_address: str, email: str) -> None:
    enforce(
        "auth-verify-otp",
        [
            RateLimitTarget("ip", ip_address, AUTH_VERIFY_LIMITS["ip"]),
            RateLimitTarget("email", email, AUTH_VERIFY_LIMITS["email"], hash_identifier=True),
        ],
        message="Too many code attempts.",
    )


def friendly_message(retry_after_seconds: int, prefix: str = "Too many requests.") -> str:
    wait = "a moment" if retry_after_seconds <= 1 else f"{retry_after_seconds} seconds"
    return f"{prefix} Please wait {wait} and try again."
