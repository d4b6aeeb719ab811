"""Error taxonomy shared by the GitHub client, analyzers and the review bot."""


class ReviewBotError(Exception):
    """Base class for every error raised by the review pipeline."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class UpstreamUnavailable(ReviewBotError):
    """GitHub or the analysis backend is unreachable or answered with a 5xx.

    Retryable at the caller's discretion; the pipeline never retries it.
    """


class AuthError(ReviewBotError):
    """The credential was rejected. Fatal for the whole operation."""


class ResourceNotFound(ReviewBotError):
    """A repository, pull request or file does not exist."""


class FixConflict(ReviewBotError):
    """A file changed between the moment it was read and the commit."""

    def __init__(self, path: str, message: str = "") -> None:
        self.path = path
        super().__init__(message or f"{path} changed since it was read")


class OperationCancelled(ReviewBotError):
    """The caller cancelled the operation before it reached its writes."""


def raise_if_cancelled(cancel, what: str) -> None:
    """Raise :class:`OperationCancelled` when the *cancel* event is set."""
    if cancel is not None and cancel.is_set():
        raise OperationCancelled(f"{what} cancelled")
