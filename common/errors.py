from __future__ import annotations

from typing import Dict, Optional


class PipelineError(Exception):
    """Base class for every error raised by the market-pulse stages."""


class ConfigurationError(PipelineError):
    """A collaborator is missing required settings (credentials, URLs).

    Raised at construction time; callers disable the collaborator rather than
    stopping the process.
    """


class BusConnectionError(PipelineError, ConnectionError):
    """The message bus could not be reached after all retry attempts."""


class NotConnectedError(PipelineError):
    """publish/subscribe was called before connect()."""


class PublishError(PipelineError):
    """One or more topic sends of a batch failed.

    `failures` maps topic -> the underlying exception.
    """

    def __init__(self, message: str, failures: Optional[Dict[str, BaseException]] = None) -> None:
        super().__init__(message)
        self.failures: Dict[str, BaseException] = dict(failures or {})


class MalformedRecordError(PipelineError, ValueError):
    """An input row or bus message could not be turned into a MarketEvent."""


class CollaboratorUnavailable(PipelineError):
    """The reasoning or record-store service failed or is not configured."""


class AlreadyRunningError(PipelineError):
    """A component was started while a previous run is still active."""
