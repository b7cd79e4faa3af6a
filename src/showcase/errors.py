"""Domain exceptions for the social core.

Each exception carries the HTTP status and a machine-readable code; the
global handlers in ``showcase.middleware.error_handler`` render them as
``{"detail", "code", "retryable"}`` JSON.
"""

from __future__ import annotations


class SocialError(Exception):
    """Base class for expected, user-facing failures."""

    status_code: int = 400
    code: str = "bad_request"
    retryable: bool = False

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.__class__.__doc__ or self.code
        super().__init__(self.detail)


class ValidationError(SocialError):
    """Malformed input; rejected before any write."""

    status_code = 422
    code = "validation_error"


class SelfFollowError(SocialError):
    """Users cannot follow themselves."""

    status_code = 400
    code = "self_follow"


class NotFoundError(SocialError):
    """Unknown user, activity or notification."""

    status_code = 404
    code = "not_found"


class PermissionDeniedError(SocialError):
    """The signed-in user may not perform this action."""

    status_code = 403
    code = "forbidden"


class UnavailableError(SocialError):
    """A downstream data source is temporarily unavailable."""

    status_code = 503
    code = "unavailable"
    retryable = True


class FeedUnavailableError(UnavailableError):
    """The activity feed is temporarily unavailable."""

    code = "feed_unavailable"


class StatsUnavailableError(UnavailableError):
    """Activity stats are temporarily unavailable."""

    code = "stats_unavailable"
