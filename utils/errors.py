# Custom lightweight errors shared by services and routes.
# Routes translate them to HTTP responses in auth/middleware.translate_errors.

class BadRequest(Exception): ...

class NotFound(Exception): ...

class Unauthorized(Exception): ...


class AuthorizationError(NotFound):
    """Owner/public predicate rejected the access. Rendered exactly like NotFound."""


class InvariantViolation(BadRequest):
    """A row would break a data-layer invariant (image parents, negative cost, bad storage path)."""


class LimitReached(Exception):
    """Free-plan entitlement exhausted for `limit` (vehicles, mods or images)."""
    def __init__(self, limit: str, maximum: int):
        self.limit = limit
        self.maximum = maximum
        super().__init__(f"Free plan allows {maximum} {limit}")


class RateLimitExceeded(Exception):
    def __init__(self, retry_after_seconds: int, message: str = "Too many requests."):
        self.retry_after_seconds = max(1, int(retry_after_seconds))
        self.message = message
        super().__init__(f"{message} retry_after={self.retry_after_seconds}s")


class RateLimiterUnavailable(Exception):
    """The rate limit store could not be reached. Callers must fail closed."""


class StorageUnavailable(Exception): ...
