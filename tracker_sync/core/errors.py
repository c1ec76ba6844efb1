"""
Error taxonomy for the tracker sync pipeline.

Every error carries an ``error_type`` (surfaced to the UI next to the raw
message) and the HTTP status the API answers with.
"""


class TrackerSyncError(Exception):
    """Base class for all pipeline errors."""

    error_type = "internal_error"
    status_code = 500

    def __init__(self, message: str = None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__

    def to_dict(self) -> dict:
        return {"error": self.error_type, "message": self.message}


class AuthError(TrackerSyncError):
    """Tracker rejected the credentials."""
    error_type = "auth_error"


class TrackerPermissionError(TrackerSyncError):
    """Tracker credentials lack permission for the requested resource."""
    error_type = "permission_error"


class NetworkError(TrackerSyncError):
    """Transport failure or unexpected tracker response."""
    error_type = "network_error"

    def __init__(self, message: str = None, status: int = None):
        super().__init__(message)
        self.status = status


class ValidationError(TrackerSyncError):
    """Request payload is missing required fields."""
    error_type = "validation_error"
    status_code = 400


class NotFoundError(TrackerSyncError):
    """Requested record does not exist."""
    error_type = "not_found"
    status_code = 404


class ConflictError(TrackerSyncError):
    """Unique constraint violated where an upsert was expected."""
    error_type = "conflict_error"


class MalformedResponseError(TrackerSyncError):
    """LLM response did not contain a valid JSON block."""
    error_type = "malformed_response"


class LLMError(TrackerSyncError):
    """Every configured LLM model failed."""
    error_type = "llm_error"


class ConfigurationError(TrackerSyncError):
    """Service or tracker configuration is unusable."""
    error_type = "configuration_error"
