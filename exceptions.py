class AssessmentError(Exception):
    """Base class for errors raised by the assessment core."""


class EngineInitError(AssessmentError):
    """The recognition engine rejected binding construction or configuration."""


class EngineRuntimeError(AssessmentError):
    """A binding reported a cancel/error event mid-session."""

    def __init__(self, message: str, reason: str = "", code: str = "", details: str = ""):
        super().__init__(message)
        self.reason = reason
        self.code = code
        self.details = details


class MediaAccessError(AssessmentError):
    """The audio source is unavailable."""


class MalformedAssessmentError(AssessmentError):
    """The assessment payload is missing expected fields."""


class InvalidSessionStateError(AssessmentError):
    """A session command was issued in a state that does not accept it."""
