import logging
from functools import wraps
from typing import Callable, Mapping, Optional

import azure.functions as func

from services.rate_limiter import friendly_message
from utils.cors import cors_response, json_response
from utils.errors import (
    BadRequest,
    LimitReached,
    NotFound,
    RateLimitExceeded,
    RateLimiterUnavailable,
    Unauthorized,
)

logger = logging.getLogger(__name__)

def rate_limited_response(e: RateLimitExceeded, headers: Optional[Mapping[str, str]] = None) -> func.HttpResponse:
    return json_response(
        {"error": friendly_message(e.retry_after_seconds, e.message), "retry_after": e.retry_after_seconds},
        429,
        headers={"Retry-After": str(e.retry_after_seconds), **(headers or {})},
    )

def translate_errors(f: Callable) -> Callable:
    """
    Decorator that maps service exceptions to HTTP responses.
    Internal failures are logged in full; callers only ever see generic messages,
    and authorization denials look exactly like missing rows.
    """
    @wraps(f)
    def decorated_function(req: func.HttpRequest) -> func.HttpResponse:
        if req.method == "OPTIONS":
            return cors_response(b"", 204)

        try:
            return f(req)
        except Unauthorized:
            return cors_response("Unauthorized", 401)
        except NotFound:
            # AuthorizationError lands here too
            return cors_response("Not found", 404)
        except BadRequest as e:
            return json_response({"error": str(e)}, 400)
        except LimitReached as e:
            return json_response(
                {"error": "Limit reached", "limit": e.limit, "max": e.maximum, "upgrade": True},
                402,  # Payment Required
            )
        except RateLimitExceeded as e:
            return rate_limited_response(e)
        except RateLimiterUnavailable:
            return json_response({"error": "Request blocked. Please try again shortly."}, 503)
        except Exception:
            logger.exception("Unhandled error in %s", getattr(f, "__name__", "handler"))
            return json_response({"error": "Something went wrong. Please try again."}, 500)

    return decorated_function
