"""Client for the external image-generation webhook.

The webhook is an opaque, untrusted service: it receives ``{"prompt": ...}``
and answers with a JSON array whose first element carries the public URL of
the generated image::

    [{"url": "https://cdn.example.com/abc.png"}, ...]

Anything else is treated as a malformed response.  The round trip is bounded
by ``timeout`` (60 seconds by default); there are no retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from imagevault.core.errors import (
    MalformedResponse,
    ValidationError,
    WebhookTimeout,
    WebhookUnreachable,
)

logger = logging.getLogger(__name__)

DEFAULT_WEBHOOK_TIMEOUT = 60.0


@dataclass(frozen=True)
class RawImageReference:
    """Public URL produced by the webhook; consumed once by the secure copy."""

    url: str


def parse_webhook_payload(payload) -> RawImageReference:
    """Extract the image reference from a decoded webhook body.

    Args:
        payload: Decoded JSON body.

    Returns:
        Reference to the first image.

    Raises:
        MalformedResponse: If the body is not a non-empty array whose first
            element has a non-empty string ``url``.
    """
    if not isinstance(payload, list) or not payload:
        raise MalformedResponse()

    first = payload[0]
    if not isinstance(first, dict):
        raise MalformedResponse()

    url = first.get("url")
    if not isinstance(url, str) or not url.strip():
        raise MalformedResponse()

    return RawImageReference(url=url.strip())


class WebhookClient:
    """Sends prompts to the image-generation webhook.

    Args:
        url: Fixed webhook endpoint.
        timeout: Upper bound on the round trip, in seconds.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_WEBHOOK_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._transport = transport

    def request_image(self, prompt: str) -> RawImageReference:
        """Ask the webhook for an image and return its public URL.

        Args:
            prompt: Text prompt; surrounding whitespace is removed.

        Raises:
            ValidationError: If the prompt is empty after trimming.
            WebhookTimeout: If the webhook does not answer in time.
            WebhookUnreachable: On any other transport failure or a non-2xx status.
            MalformedResponse: If the body does not have the expected shape.
        """
        prompt = (prompt or "").strip()
        if not prompt:
            raise ValidationError("Please enter a prompt to generate an image")

        logger.info("Requesting image from webhook (%d chars)", len(prompt))
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(
                    self.url,
                    json={"prompt": prompt},
                    headers={"Content-Type": "application/json"},
                )
                response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.warning("Webhook timed out after %.0fs", self.timeout)
            raise WebhookTimeout() from e
        except httpx.HTTPStatusError as e:
            logger.warning("Webhook answered %s", e.response.status_code)
            raise WebhookUnreachable(
                f"Webhook request failed with status {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.warning("Webhook unreachable: %s", e)
            raise WebhookUnreachable(f"Webhook unreachable: {e}") from e

        try:
            payload = response.json()
        except ValueError as e:
            raise MalformedResponse() from e

        reference = parse_webhook_payload(payload)
        logger.info("Webhook returned image reference")
        return reference
