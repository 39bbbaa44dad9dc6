"""Exception taxonomy for the alert engine.

Every failure the engine absorbs maps to one of these classes so the
orchestrator can decide, per class, whether to skip a rule, abort a firing or
just record a failed channel.
"""

from __future__ import annotations


class AlertEngineError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(AlertEngineError):
    """A rule is malformed (unknown operator, parameter, channel...)."""


class DataAbsentError(AlertEngineError):
    """The sample does not carry the parameter a rule needs."""

    def __init__(self, parameter: str, device_id: str | None = None) -> None:
        self.parameter = parameter
        self.device_id = device_id
        super().__init__(f"Parameter {parameter} missing from sample")


class SuppressionStoreError(AlertEngineError):
    """Suppression state could not be read or written."""


class RecordingError(AlertEngineError):
    """A TriggeredAlert audit record could not be written."""


class DispatchError(AlertEngineError):
    """A channel provider failed to deliver a notification."""

    def __init__(self, channel: str, message: str) -> None:
        self.channel = channel
        super().__init__(message)


__all__ = [
    "AlertEngineError",
    "ConfigurationError",
    "DataAbsentError",
    "SuppressionStoreError",
    "RecordingError",
    "DispatchError",
]
