"""Error taxonomy for the session core."""


class CoursePilotError(Exception):
    """Base class for errors surfaced to the user."""


class GenerationFailure(CoursePilotError):
    """A backend generation call failed or returned a non-success response."""

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        self.detail = detail
        message = f"{operation} failed"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class SessionExpired(GenerationFailure):
    """The backend rejected our credentials (HTTP 401)."""


class AudioFailure(CoursePilotError):
    """Audio synthesis failed. Never fatal: playback is simply unavailable."""


class EditSaveFailure(CoursePilotError):
    """Saving the syllabus draft failed; the draft is kept for retry."""
