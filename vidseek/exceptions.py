from typing import Dict, Optional


class VidSeekException(Exception):
    """Base exception for vidseek."""

    def __init__(self, message: str, error_code: str = None, details: Dict = None):
        super().__init__(message)
        self.error_code = error_code
        self.details = details or {}


class ProviderException(VidSeekException):
    """Raised when an external provider fails."""
    pass


class UpstreamError(ProviderException):
    """Raised when a collaborator call fails (network, auth, quota)."""
    pass


class RateLimitError(UpstreamError):
    """Raised when an upstream service rejects a call with HTTP 429."""

    def __init__(self, message: str, retry_after: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class ParseError(VidSeekException):
    """Raised when a collaborator returns structurally invalid output."""
    pass


class ConfigurationException(VidSeekException):
    """Raised when configuration is invalid."""
    pass


class ValidationError(VidSeekException):
    """Raised when input or prerequisite data is missing or malformed."""
    pass


class NotFoundError(VidSeekException):
    """Raised when a referenced video, frame or run does not exist."""
    pass


class PrereqRaceError(VidSeekException):
    """Raised when a second pipeline is requested for a video that already has one active."""
    pass
