"""Error taxonomy for the IdeaForge backend.

Every error carries the HTTP status it maps to and a user-safe message.
The global handlers in ``ideaforge.main`` render them into the response
envelope; internal detail is only logged.
"""


class IdeaForgeError(Exception):
    """Base exception for IdeaForge application."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None, *, errors: dict[str, str] | None = None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)


class ValidationError(IdeaForgeError):
    """Raised when request input is malformed or fails question rules."""

    status_code = 400
    default_message = "Invalid request"


class AuthError(IdeaForgeError):
    """Raised when the caller is not authenticated."""

    status_code = 401
    default_message = "Unauthorized"


class ForbiddenError(IdeaForgeError):
    """Raised when the caller does not own the resource or exceeded a quota."""

    status_code = 403
    default_message = "Forbidden"


class NotFoundError(IdeaForgeError):
    status_code = 404
    default_message = "Idea not found"


class StateGuardError(IdeaForgeError):
    """Raised when an operation is not permitted in the idea's current status."""

    status_code = 400
    default_message = "Operation not allowed in the current status"


class InvalidStateTransition(StateGuardError):
    """Raised when a guarded transition finds the status already changed."""

    status_code = 409
    default_message = "Idea status changed, please refresh and try again"

    def __init__(self, idea_id: str, expected: str, target: str, message: str | None = None):
        self.idea_id = idea_id
        self.expected = expected
        self.target = target
        super().__init__(message)


class ConflictError(IdeaForgeError):
    """Raised when a write keeps losing to concurrent writers."""

    status_code = 409
    default_message = "The idea was modified concurrently, please try again"


class AdmissionDenied(IdeaForgeError):
    """Raised when a concurrency cap rejects a new background job."""

    status_code = 429
    default_message = "Too many analyses running. Please wait a minute and try again."


class RateLimited(IdeaForgeError):
    """Raised when a rate limit window is exhausted."""

    status_code = 429
    default_message = "Too many requests. Please try again later."

    def __init__(self, retry_after: int, headers: dict[str, str] | None = None, message: str | None = None):
        self.retry_after = retry_after
        self.headers = headers or {}
        super().__init__(message)


class UpstreamTimeout(IdeaForgeError):
    """Raised when the AI service did not answer in time."""

    status_code = 504
    default_message = "The AI service took too long to respond. Please try again."


class ClientTimeout(UpstreamTimeout):
    status_code = 408
    default_message = "Request timed out. Please try again."


class UpstreamFailure(IdeaForgeError):
    """Raised when the AI service returned an error."""

    status_code = 502
    default_message = "The AI service returned an error. Please try again."


class UpstreamUnavailable(UpstreamFailure):
    status_code = 503
    default_message = "The AI service is temporarily unavailable. Please try again later."


class NonRetryableError(UpstreamFailure):
    """Raised when upstream output is unusable; retrying would not help."""

    default_message = "The AI service returned an unusable response."
