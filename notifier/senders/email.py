"""Email sender backed by the Resend HTTP API."""

import logging

import httpx

from notifier.config import get_settings
from notifier.errors import RateLimited, TransientFailure, TransportFailure

logger = logging.getLogger(__name__)


class EmailSender:
    """Sends one email per call through Resend.

    Exactly one HTTP request per ``send``; failures are raised, never
    retried here.
    """

    def __init__(
        self,
        api_key: str | None = None,
        from_address: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize the email sender.

        Args:
            api_key: Resend API key (default from config)
            from_address: Sender address (default from config)
            base_url: Resend API base URL (default from config)
            timeout: Request timeout in seconds
        """
        settings = get_settings()
        self.api_key = api_key or settings.RESEND_API_KEY
        self.from_address = from_address or settings.EMAIL_FROM
        self.base_url = (base_url or settings.RESEND_API_URL).rstrip("/")
        self.timeout = timeout or settings.SEND_TIMEOUT_SECONDS
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Lazy-initialize HTTP client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def send(self, to: str, subject: str, html: str, text: str) -> str | None:
        """Send an email.

        Args:
            to: Destination address
            subject: Rendered subject line
            html: Rendered HTML body
            text: Rendered plain text body

        Returns:
            Provider message id, if the provider returned one

        Raises:
            TransportFailure: Provider rejected the email
            RateLimited: Provider throttled the request
            TransientFailure: Network error or timeout
        """
        if not self.api_key:
            raise TransportFailure("RESEND_API_KEY is not configured")

        try:
            response = self.client.post(
                f"{self.base_url}/emails",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "from": self.from_address,
                    "to": to,
                    "subject": subject,
                    "html": html,
                    "text": text,
                },
            )
        except httpx.TimeoutException as e:
            raise TransientFailure(f"Email provider timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransientFailure(f"Email provider unreachable: {e}") from e

        if response.status_code == 429:
            raise RateLimited(
                f"Resend error: {_provider_message(response)}", response.status_code
            )
        if response.status_code >= 400:
            raise TransportFailure(
                f"Resend error: {_provider_message(response)}", response.status_code
            )

        try:
            message_id = response.json().get("id")
        except ValueError:
            message_id = None

        logger.debug("Email accepted by provider", extra={"message_id": message_id})
        return message_id

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None


def _provider_message(response: httpx.Response) -> str:
    """Extract the provider's error message from a failed response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return body.get("message") or body.get("error") or str(body)
    return str(body)
