"""Web Push sender.

Sends one encrypted push message per call through pywebpush and maps the
push service's response onto the delivery error taxonomy:

- 410 Gone / 404 Not Found -> PermanentlyInvalidEndpoint
- 413 Payload Too Large -> PayloadTooLarge
- 429 Too Many Requests -> RateLimited
- anything else -> TransientFailure
"""

import json
import logging
from typing import Any

from pywebpush import WebPushException, webpush

from notifier.config import get_settings
from notifier.errors import (
    MalformedCredential,
    PayloadTooLarge,
    PermanentlyInvalidEndpoint,
    RateLimited,
    TransientFailure,
)

logger = logging.getLogger(__name__)

# Push services reject encrypted records above 4KB
MAX_PAYLOAD_BYTES = 4096


def parse_credential(raw: str | dict[str, Any]) -> dict[str, Any]:
    """Parse a stored subscription credential into pywebpush's shape.

    Args:
        raw: JSON string (as stored) or already-decoded dict

    Returns:
        Dict with ``endpoint`` and ``keys`` (``p256dh``, ``auth``)

    Raises:
        MalformedCredential: If the credential is not JSON or lacks
            the endpoint or keys
    """
    if isinstance(raw, dict):
        subscription = raw
    else:
        try:
            subscription = json.loads(raw)
        except (TypeError, ValueError):
            raise MalformedCredential("Invalid device token format") from None

    if not isinstance(subscription, dict):
        raise MalformedCredential("Invalid device token format")

    endpoint = subscription.get("endpoint")
    keys = subscription.get("keys")
    if (
        not endpoint
        or not isinstance(keys, dict)
        or not keys.get("p256dh")
        or not keys.get("auth")
    ):
        raise MalformedCredential(
            "Invalid device token format: missing endpoint or keys"
        )

    return {
        "endpoint": endpoint,
        "keys": {"p256dh": keys["p256dh"], "auth": keys["auth"]},
    }


class PushSender:
    """Delivers one push message per call. Never retries internally."""

    def __init__(
        self,
        vapid_private_key: str | None = None,
        vapid_email: str | None = None,
        ttl: int | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self.vapid_private_key = vapid_private_key or settings.VAPID_PRIVATE_KEY
        self.vapid_claims = {"sub": vapid_email or settings.VAPID_EMAIL}
        self.ttl = ttl if ttl is not None else settings.PUSH_TTL_SECONDS
        self.timeout = timeout or settings.SEND_TIMEOUT_SECONDS

    def send(self, credential: str | dict[str, Any], payload: dict[str, Any]) -> None:
        """Send a push payload to a subscription.

        Args:
            credential: Stored subscription credential
            payload: Push payload (title, body, data, ...)

        Raises:
            MalformedCredential: Credential unusable, nothing was sent
            PayloadTooLarge: Payload over the push size limit
            PermanentlyInvalidEndpoint: Subscription is gone
            RateLimited: Push service throttled the request
            TransientFailure: Any other network or provider error
        """
        subscription = parse_credential(credential)
        data = json.dumps(payload)

        if len(data.encode("utf-8")) > MAX_PAYLOAD_BYTES:
            raise PayloadTooLarge(
                f"Push payload is {len(data.encode('utf-8'))} bytes, "
                f"limit is {MAX_PAYLOAD_BYTES}"
            )

        endpoint_short = subscription["endpoint"][:60]

        try:
            webpush(
                subscription_info=subscription,
                data=data,
                vapid_private_key=self.vapid_private_key,
                vapid_claims=dict(self.vapid_claims),
                ttl=self.ttl,
                timeout=self.timeout,
            )
        except WebPushException as e:
            status_code = None
            if getattr(e, "response", None) is not None:
                status_code = e.response.status_code
            raise classify_push_error(status_code, str(e)) from e
        except Exception as e:
            raise TransientFailure(f"Push delivery failed: {e}") from e

        logger.debug("Push delivered", extra={"endpoint": endpoint_short})


def classify_push_error(status_code: int | None, message: str):
    """Map a push service status code to a delivery error."""
    if status_code in (404, 410):
        return PermanentlyInvalidEndpoint(
            f"Push subscription gone ({status_code}): {message}", status_code
        )
    if status_code == 413:
        return PayloadTooLarge(f"Push payload too large: {message}", status_code)
    if status_code == 429:
        return RateLimited(f"Push service rate limited: {message}", status_code)
    return TransientFailure(f"Push delivery failed: {message}", status_code)
