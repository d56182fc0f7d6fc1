"""Error kinds raised across AgriAid."""

from enum import Enum


class AgriAidError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(AgriAidError):
    """A required startup setting is missing or malformed."""


class ValidationError(AgriAidError):
    """Bad or missing form input. Shown inline, blocks the transition."""


class InvalidTransitionError(AgriAidError):
    """A wizard event was fired from a state that does not accept it."""


class PredictionError(AgriAidError):
    pass


class VisualizationError(AgriAidError):
    pass


class SolutionError(AgriAidError):
    pass


class SpeechError(AgriAidError):
    """Remote voice synthesis failed. Never shown to the user."""


class LocationErrorReason(Enum):
    UNSUPPORTED = "unsupported"
    PERMISSION_DENIED = "permission_denied"
    POSITION_UNAVAILABLE = "position_unavailable"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


LOCATION_MESSAGES = {
    LocationErrorReason.UNSUPPORTED: "Geolocation is not supported by your browser.",
    LocationErrorReason.PERMISSION_DENIED: "You denied the request for Geolocation.",
    LocationErrorReason.POSITION_UNAVAILABLE: "Location information is unavailable.",
    LocationErrorReason.TIMEOUT: "The request to get user location timed out.",
    LocationErrorReason.UNKNOWN: "An unknown error occurred.",
}


class LocationError(AgriAidError):
    def __init__(self, reason: LocationErrorReason):
        self.reason = reason
        super().__init__(LOCATION_MESSAGES[reason])
