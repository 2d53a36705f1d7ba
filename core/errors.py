"""
Error hierarchy for the side-effect pipeline.

Every failure raised by a processor, handler, or backend derives from
PipelineError so the drain and consume loops can log it uniformly. Nothing
here is caught by the raiser: the queue layer decides retry vs dead-letter,
the broker layer decides redelivery.
"""
from __future__ import annotations


class PipelineError(Exception):
    """Base exception for queue, broker, and handler failures."""


class ConfigurationError(PipelineError):
    """Required settings are missing; raised at construction, never deferred."""


class UnknownJobTypeError(PipelineError):
    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(f"Unknown job type: {job_type}")


class MalformedJobError(PipelineError):
    """A popped record could not be decoded into a Job."""

    def __init__(self, message: str, raw: str = ""):
        self.raw = raw
        super().__init__(message)


class EmailDeliveryError(PipelineError):
    """The email transport reported failure for a send."""

    def __init__(self, to: str, subject: str, reason: str = ""):
        self.to = to
        self.subject = subject
        detail = f": {reason}" if reason else ""
        super().__init__(f"Email to {to} ({subject!r}) was not delivered{detail}")


class EventTypeMismatchError(PipelineError):
    """An event reached a handler registered for a different event type."""

    def __init__(self, expected: str, received: str):
        self.expected = expected
        self.received = received
        super().__init__(f"Invalid event type for {expected} handler: {received}")


class BrokerNotConnectedError(PipelineError):
    def __init__(self, message: str = "Broker connection is not established"):
        super().__init__(message)
