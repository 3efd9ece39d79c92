import hmac
import hashlib
from typing import Union

from .logging import get_logger

logger = get_logger(__name__)

SIGNATURE_PREFIX = "sha256="


def _as_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


class WebhookSignatureVerifier:
    """HMAC-SHA256 webhook signature and freshness checks."""

    @staticmethod
    def generate_signature(raw_body: bytes, secret: Union[str, bytes]) -> str:
        """
        Generate the signature header value for a webhook body.

        The HMAC is computed over the raw request bytes exactly as sent; the
        body must never be parsed and re-serialized before signing or
        verifying.

        Args:
            raw_body: Request body bytes
            secret: Shared webhook secret

        Returns:
            Signature in format: sha256=<hex_digest>
        """
        digest = hmac.new(_as_bytes(secret), raw_body, hashlib.sha256).hexdigest()
        return f"{SIGNATURE_PREFIX}{digest}"

    @staticmethod
    def verify_signature(raw_body: bytes, signature_header: str, secret: Union[str, bytes]) -> bool:
        """
        Check an ``X-Signature`` header against the raw body.

        Accepts ``sha256=<hex>`` or the bare lowercase hex digest.

        Returns:
            True if the signature matches
        """
        expected = hmac.new(_as_bytes(secret), raw_body, hashlib.sha256).hexdigest()
        received = signature_header or ""
        if received.startswith(SIGNATURE_PREFIX):
            received = received[len(SIGNATURE_PREFIX):]

        # Constant-time comparison
        valid = hmac.compare_digest(expected.encode("ascii"), received.encode("utf-8"))
        if not valid:
            logger.warning(
                "Webhook signature verification failed",
                received_prefix=received[:12] + "..." if len(received) > 12 else received,
            )
        return valid

    @staticmethod
    def verify_freshness(timestamp_header: str, now: int, max_age_seconds: int = 300) -> bool:
        """
        Replay protection: accept when ``now - timestamp <= max_age_seconds``.

        There is no upper bound, so timestamps ahead of ``now`` pass. A header
        that is not an integer fails.
        """
        try:
            webhook_timestamp = int(timestamp_header)
        except (ValueError, TypeError):
            logger.warning("Invalid webhook timestamp format", timestamp=timestamp_header)
            return False

        age_seconds = now - webhook_timestamp
        if age_seconds > max_age_seconds:
            logger.warning(
                "Webhook timestamp too old",
                age_seconds=age_seconds,
                tolerance_seconds=max_age_seconds
            )
            return False
        return True


# Module-level aliases used by the ingestion path
generate_signature = WebhookSignatureVerifier.generate_signature
verify_signature = WebhookSignatureVerifier.verify_signature
verify_freshness = WebhookSignatureVerifier.verify_freshness
