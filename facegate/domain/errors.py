"""Exception taxonomy shared by the tracker, recognition client and routes."""


class FailureStoreError(RuntimeError):
    """A failure could not be durably recorded. Callers may retry."""

    def __init__(self, user_id: str, cause: Exception | None = None):
        self.user_id = user_id
        self.cause = cause
        detail = f": {type(cause).__name__}" if cause else ""
        super().__init__(f"Failure for user {user_id!r} was not recorded{detail}")


class FaceApiError(Exception):
    """The Face API answered with a non-zero ``error_code``."""

    def __init__(self, code: int | None, message: str = ""):
        self.code = code
        self.message = message
        super().__init__(f"Face API error {code}: {message}")


class RecognitionUnavailableError(Exception):
    """Recognition service unreachable, timed out, or misconfigured."""
