"""Generation orchestrator: prompt → webhook → secure copy → signed URL → history.

State machine
-------------
::

    IDLE → GENERATING → (WAITING_FOR_WEBHOOK) → SECURING → SIGNING → RECORDING → DONE

    GENERATING | WAITING_FOR_WEBHOOK | SECURING | SIGNING → FAILED

- ``WAITING_FOR_WEBHOOK`` is a display annotation set once the webhook has been
  silent for ``waiting_threshold`` seconds.  It does not change the wait.
- Any failure before ``RECORDING`` ends in ``FAILED`` with the error that
  caused it.
- A history failure is logged and the run still ends in ``DONE`` with
  ``history_recorded=False``: the image is shown even if it was not recorded.

One orchestrator drives one user's generations.  Only one run may be in
flight; a second submit is rejected without touching the running one, which
always runs to completion or timeout.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum

from imagevault.core.auth import AuthContext
from imagevault.core.errors import ImageVaultError, PersistenceError, ValidationError
from imagevault.core.history import HistoryRecorder
from imagevault.core.secure_copy import SecureCopier
from imagevault.core.signed_urls import DEFAULT_SIGNED_URL_TTL, SignedUrlIssuer
from imagevault.core.webhook import WebhookClient

logger = logging.getLogger(__name__)

DEFAULT_WAITING_THRESHOLD = 3.0
GENERIC_FAILURE_MESSAGE = "Failed to generate image. Please try again."


class GenerationState(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    WAITING_FOR_WEBHOOK = "waiting_for_webhook"
    SECURING = "securing"
    SIGNING = "signing"
    RECORDING = "recording"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (GenerationState.DONE, GenerationState.FAILED)


STATUS_MESSAGES: dict[GenerationState, str] = {
    GenerationState.IDLE: "",
    GenerationState.GENERATING: "🎨 Crafting your masterpiece...",
    GenerationState.WAITING_FOR_WEBHOOK: "⏳ Waiting for image engine response...",
    GenerationState.SECURING: "🔄 Securing your image...",
    GenerationState.SIGNING: "🔐 Preparing your private link...",
    GenerationState.RECORDING: "💾 Saving to your history...",
    GenerationState.DONE: "✅ Image generated successfully!",
}


@dataclass(frozen=True)
class GeneratedImage:
    """What the front end displays after a successful run."""

    signed_url: str
    path: str
    prompt: str
    expires_at: datetime
    timestamp: float


@dataclass(frozen=True)
class GenerationStatus:
    """Snapshot of the orchestrator's state, as shown to the user."""

    state: GenerationState = GenerationState.IDLE
    message: str = ""
    prompt: str | None = None
    image: GeneratedImage | None = None
    error: ImageVaultError | None = None
    history_recorded: bool = False

    @property
    def in_flight(self) -> bool:
        return self.state not in (GenerationState.IDLE, GenerationState.DONE, GenerationState.FAILED)


StatusListener = Callable[[GenerationStatus], None]


class GenerationOrchestrator:
    """Sequences one generation run and tracks its displayed state.

    Args:
        webhook: Client for the image-generation webhook.
        copier: Secure copy into private storage.
        issuer: Signed URL issuer for the private bucket.
        recorder: History table writer.
        waiting_threshold: Seconds before the waiting annotation is shown.
        signed_url_ttl: Lifetime of the display URL, in seconds.
        listener: Optional callback receiving every status change.
    """

    def __init__(
        self,
        webhook: WebhookClient,
        copier: SecureCopier,
        issuer: SignedUrlIssuer,
        recorder: HistoryRecorder,
        *,
        waiting_threshold: float = DEFAULT_WAITING_THRESHOLD,
        signed_url_ttl: int = DEFAULT_SIGNED_URL_TTL,
        listener: StatusListener | None = None,
    ) -> None:
        self.webhook = webhook
        self.copier = copier
        self.issuer = issuer
        self.recorder = recorder
        self.waiting_threshold = waiting_threshold
        self.signed_url_ttl = signed_url_ttl
        self.listener = listener

        self._lock = threading.Lock()
        self._status = GenerationStatus()

    @property
    def status(self) -> GenerationStatus:
        with self._lock:
            return self._status

    def _notify(self, status: GenerationStatus) -> None:
        if self.listener is None:
            return
        try:
            self.listener(status)
        except Exception:
            logger.exception("Status listener raised")

    def _transition(self, state: GenerationState, **changes) -> GenerationStatus:
        changes.setdefault("message", STATUS_MESSAGES.get(state, ""))
        with self._lock:
            self._status = replace(self._status, state=state, **changes)
            status = self._status
        logger.debug("Generation state -> %s", state.value)
        self._notify(status)
        return status

    def _fail(self, error: ImageVaultError) -> GenerationStatus:
        logger.error("Error generating image: %s", error.message)
        return self._transition(GenerationState.FAILED, message=error.message, error=error)

    def _mark_waiting(self) -> None:
        with self._lock:
            if self._status.state is not GenerationState.GENERATING:
                return
            self._status = replace(
                self._status,
                state=GenerationState.WAITING_FOR_WEBHOOK,
                message=STATUS_MESSAGES[GenerationState.WAITING_FOR_WEBHOOK],
            )
            status = self._status
        self._notify(status)

    def submit(self, prompt: str, auth: AuthContext | None) -> GenerationStatus:
        """Run one generation to completion.

        Args:
            prompt: User prompt; trimmed before use.
            auth: Authenticated caller.

        Returns:
            The terminal status (``DONE`` or ``FAILED``).

        Raises:
            ValidationError: If the prompt is empty, no caller is given, or a
                run is already in flight.  The state is left unchanged.
        """
        prompt = (prompt or "").strip()
        if not prompt:
            raise ValidationError("Please enter a prompt to generate an image")
        if auth is None:
            raise ValidationError("Please sign in to generate an image")

        with self._lock:
            if self._status.in_flight:
                raise ValidationError("A generation is already in progress")
            self._status = GenerationStatus(
                state=GenerationState.GENERATING,
                message=STATUS_MESSAGES[GenerationState.GENERATING],
                prompt=prompt,
            )
            status = self._status
        self._notify(status)

        try:
            return self._run(prompt, auth)
        except ImageVaultError as e:
            return self._fail(e)
        except Exception as e:
            logger.exception("Unexpected error during generation")
            error = ImageVaultError(GENERIC_FAILURE_MESSAGE)
            error.__cause__ = e
            return self._fail(error)

    def _run(self, prompt: str, auth: AuthContext) -> GenerationStatus:
        timer = threading.Timer(self.waiting_threshold, self._mark_waiting)
        timer.daemon = True
        timer.start()
        try:
            reference = self.webhook.request_image(prompt)
        finally:
            timer.cancel()

        self._transition(GenerationState.SECURING)
        stored = self.copier.copy(auth, reference.url)

        self._transition(GenerationState.SIGNING)
        signed = self.issuer.issue(stored.path, self.signed_url_ttl)

        image = GeneratedImage(
            signed_url=signed.url,
            path=stored.path,
            prompt=prompt,
            expires_at=signed.expires_at,
            timestamp=time.time(),
        )
        self._transition(GenerationState.RECORDING, image=image)

        recorded = True
        try:
            self.recorder.record(auth, prompt, stored.path)
        except PersistenceError as e:
            # The image is still displayed; the stored object stays orphaned.
            logger.error("Error saving image to history: %s", e.message)
            recorded = False

        return self._transition(GenerationState.DONE, history_recorded=recorded)
