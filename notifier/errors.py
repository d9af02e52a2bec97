"""Delivery error taxonomy.

Every failure a delivery attempt can end in is one of these classes. The
``code`` is persisted on the queue row so the retry policy can tell
retryable failures from permanent ones without re-parsing messages.
"""


class DeliveryError(Exception):
    """Base class for delivery failures."""

    code = "delivery_error"
    retryable = False
    permanent = False

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ClaimConflict(DeliveryError):
    """Row was already claimed by another runner. Benign, skip it."""

    code = "claim_conflict"


class MalformedCredential(DeliveryError):
    """Stored push credential cannot be parsed or lacks endpoint/keys."""

    code = "malformed_credential"
    permanent = True


class PermanentlyInvalidEndpoint(DeliveryError):
    """Push service reported the subscription as gone (410/404)."""

    code = "invalid_endpoint"
    permanent = True


class PayloadTooLarge(DeliveryError):
    """Payload exceeds what the push service accepts (413)."""

    code = "payload_too_large"
    permanent = True


class TransientFailure(DeliveryError):
    """Network or provider error worth retrying on a later cycle."""

    code = "transient_failure"
    retryable = True


class RateLimited(TransientFailure):
    """Provider throttled the request (429)."""

    code = "rate_limited"


class TransportFailure(TransientFailure):
    """Email provider rejected or failed the send."""

    code = "transport_failure"


class AbandonedClaim(TransientFailure):
    """Claim expired before its outcome was reconciled."""

    code = "abandoned"


class StoreUnavailable(Exception):
    """Delivery store cannot be reached. Fatal to the current run only."""


# Codes the retry policy may move from failed back to pending
RETRYABLE_CODES = frozenset(
    {
        TransientFailure.code,
        RateLimited.code,
        TransportFailure.code,
        AbandonedClaim.code,
    }
)
