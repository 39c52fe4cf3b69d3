"""Error taxonomy for the generation pipeline.

Every failure the pipeline can surface is an :class:`ImageVaultError`.  The
message is intended to be displayed directly to the user, and ``status_code``
is the HTTP status the API layer answers with.

Hierarchy
---------
- ValidationError        empty prompt, password/name policy, request in flight
- AuthError
    - Unauthorized       missing session or unresolvable token
- WebhookTimeout         webhook exceeded its time bound
- UpstreamError
    - WebhookUnreachable transport failure or non-2xx from the webhook
    - MalformedResponse  webhook body did not have the expected shape
- StorageError
    - InvalidUrl, SourceFetchFailed, EmptySource, UploadFailed
    - PathNotFound, SigningFailed, SignedUrlRejected
- PersistenceError       history table failure (non-fatal to generation)
- MissingConfig          backend credentials absent
"""


class ImageVaultError(Exception):
    """Base class for all pipeline errors."""

    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ValidationError(ImageVaultError):
    """User input failed validation."""

    status_code = 400


class AuthError(ImageVaultError):
    status_code = 401


class Unauthorized(AuthError):
    """No session, or the bearer token does not resolve to a user."""

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class WebhookTimeout(ImageVaultError):
    """The webhook did not answer within its time bound."""

    status_code = 504

    def __init__(
        self,
        message: str = "Request timed out. The webhook is taking longer than expected.",
    ) -> None:
        super().__init__(message)


class UpstreamError(ImageVaultError):
    status_code = 502


class WebhookUnreachable(UpstreamError):
    pass


class MalformedResponse(UpstreamError):
    def __init__(self, message: str = "Invalid response from webhook") -> None:
        super().__init__(message)


class StorageError(ImageVaultError):
    status_code = 400


class InvalidUrl(StorageError):
    pass


class SourceFetchFailed(StorageError):
    pass


class EmptySource(StorageError):
    pass


class UploadFailed(StorageError):
    pass


class PathNotFound(StorageError):
    status_code = 404


class SigningFailed(StorageError):
    pass


class SignedUrlRejected(StorageError):
    """A signed URL was tampered with or has expired."""

    status_code = 403


class PersistenceError(ImageVaultError):
    status_code = 500


class MissingConfig(ImageVaultError):
    status_code = 500
