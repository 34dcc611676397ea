from __future__ import annotations


class TrackerError(Exception):
    """Base class for every error raised by the tracker core."""


class NotFound(TrackerError):
    """No routing record exists for the requested service."""


class VersionConflict(TrackerError):
    """The stored record moved past the version the writer observed."""


class RetryExhausted(TrackerError):
    def __init__(self, operation: str, service: str, tries: int):
        super().__init__(f"{operation}({service}): gave up after {tries} tries")
        self.operation = operation
        self.service = service
        self.tries = tries


class InventoryError(TrackerError):
    """ECS returned an error while listing or describing cluster state."""


class StoreError(TrackerError):
    """DynamoDB returned an error other than a failed version check."""


class ResolutionError(TrackerError):
    """A container instance could not be turned into a private IP."""


class NoRoutableBindings(TrackerError):
    """The service runs tasks, but none of them exposes a host port."""


class InvalidEvent(TrackerError):
    """An SNS notification or the ECS event inside it could not be decoded."""


def describe(exc: BaseException) -> str:
    """Flatten an exception chain into ``outer: inner: root`` form."""
    parts: list[str] = []
    cur: BaseException | None = exc
    while cur is not None:
        msg = str(cur) or type(cur).__name__
        if not parts or parts[-1] != msg:
            parts.append(msg)
        cur = cur.__cause__
    return ": ".join(parts)
