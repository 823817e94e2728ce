"""Exception taxonomy for the snapshot engine.

Only ``AuthError`` and ``InvalidSnapshotError`` cross the engine boundary.
The remaining classes are raised close to the failing I/O call and turned
into recorded messages by the caller (introspection, fetch, publish, and
notification failures never abort a run).
"""


class SnapshotError(Exception):
    """Base class for all engine errors."""


class AuthError(SnapshotError):
    """Missing, invalid or insufficient credentials.

    Attributes:
        status_code: HTTP status the service layer should answer with
            (401 unauthenticated, 403 forbidden, 400 bad confirmation).
    """

    def __init__(self, message: str, status_code: int = 401) -> None:
        super().__init__(message)
        self.status_code = status_code


class IntrospectionError(SnapshotError):
    """A catalog query for one artifact class failed."""


class FetchError(SnapshotError):
    """A page fetch for a table failed."""


class PublishError(SnapshotError):
    """Uploading an artifact or issuing its signed URL failed."""


class NotificationError(SnapshotError):
    """Sending the summary email failed."""


class InvalidSnapshotError(SnapshotError):
    """The supplied backup payload is not a usable snapshot."""
