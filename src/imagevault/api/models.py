"""Pydantic request and response models for the ImageVault API.

FastAPI uses these models for request validation, serialisation, and the
OpenAPI schema.  Field names of the secure copy function (``imageUrl``) keep
the camelCase spelling its existing clients send.

Models
------
SecureCopyRequest / SecureCopyResponse
    ``POST /functions/v1/secure-image-uploader``.
GenerateRequest / GenerateResponse
    ``POST /api/generate`` — one orchestrated generation.
HistoryItem / HistoryPage
    ``GET /api/history`` — paginated history with fresh signed URLs.
SignRequest / SignedUrlResponse
    ``POST /api/images/sign``.
ProfileUpdateRequest / ProfileResponse
    ``GET``/``PATCH /api/profile``.
CredentialsRequest
    ``POST /api/auth/validate``.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from imagevault.core.auth import UserProfile
from imagevault.core.history import HistoryRecord
from imagevault.core.orchestrator import GenerationStatus
from imagevault.core.signed_urls import SignedAccessUrl


class SecureCopyRequest(BaseModel):
    """Request body for the secure copy function.

    Attributes:
        imageUrl: Public URL of the image to copy.  A missing value is
            reported by the function itself as a 400, not as a schema error.
    """

    imageUrl: str | None = Field(
        default=None,
        description="Public URL of the image to copy into private storage.",
    )


class SecureCopyResponse(BaseModel):
    path: str = Field(..., description="Private object path, '{userId}/{uuid}.png'.")


class GenerateRequest(BaseModel):
    """Request body for ``POST /api/generate``."""

    prompt: str = Field(..., description="Text prompt; trimmed before use.")


class GeneratedImageModel(BaseModel):
    signed_url: str
    path: str
    prompt: str
    expires_at: datetime
    timestamp: float


class GenerateResponse(BaseModel):
    """Terminal status of one generation run.

    Attributes:
        state: ``"done"`` or ``"failed"``.
        message: User-facing status or error message.
        image: The generated image when ``state`` is ``"done"``.
        history_recorded: Whether the history row was written.
        error: Error class name when ``state`` is ``"failed"``.
    """

    state: str
    message: str
    image: GeneratedImageModel | None = None
    history_recorded: bool = False
    error: str | None = None

    @classmethod
    def from_status(cls, status: GenerationStatus) -> GenerateResponse:
        image = None
        if status.image is not None:
            image = GeneratedImageModel(
                signed_url=status.image.signed_url,
                path=status.image.path,
                prompt=status.image.prompt,
                expires_at=status.image.expires_at,
                timestamp=status.image.timestamp,
            )
        return cls(
            state=status.state.value,
            message=status.message,
            image=image,
            history_recorded=status.history_recorded,
            error=type(status.error).__name__ if status.error is not None else None,
        )


class HistoryItem(BaseModel):
    """A history row plus a freshly minted display URL.

    ``signed_url`` is ``None`` when the stored object no longer exists.
    Legacy rows without a path carry their stored ``image_url`` instead.
    """

    id: str
    prompt: str
    path: str | None = None
    created_at: str | None = None
    signed_url: str | None = None
    image_url: str | None = None

    @classmethod
    def from_record(
        cls, record: HistoryRecord, signed: SignedAccessUrl | None
    ) -> HistoryItem:
        return cls(
            id=record.id,
            prompt=record.prompt,
            path=record.path,
            created_at=record.created_at,
            signed_url=signed.url if signed else None,
            image_url=record.image_url,
        )


class HistoryPage(BaseModel):
    total: int
    page: int
    per_page: int
    pages: int
    items: list[HistoryItem]


class SignRequest(BaseModel):
    path: str = Field(..., description="Object path in the caller's namespace.")


class SignedUrlResponse(BaseModel):
    url: str
    path: str
    expires_at: datetime


class ProfileUpdateRequest(BaseModel):
    name: str = Field(..., description="New display name (at least 2 characters).")


class ProfileResponse(BaseModel):
    id: str
    name: str
    email: str
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_profile(cls, profile: UserProfile) -> ProfileResponse:
        return cls(
            id=profile.id,
            name=profile.name,
            email=profile.email,
            created_at=profile.created_at,
            updated_at=profile.updated_at,
        )


class CredentialsRequest(BaseModel):
    """Sign-in / sign-up form values checked against the account policy."""

    mode: str = Field(default="signin", description="'signin' or 'signup'.")
    email: str
    password: str
    confirm_password: str | None = None
    name: str | None = None
