"""
Webhook signature validation - verify incoming delivery-provider webhooks are
authentic and fresh.

Signed content is `timestamp + "." + raw_body`, HMAC-SHA256 with the
deployment-level shared secret. The digest must be computed over the exact
bytes received, before any JSON parsing. Failures are reported in the result,
never raised, so the caller can answer 401 without relying on a traceback.
"""
import base64
import binascii
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"

DEFAULT_MAX_AGE_SECONDS = 600
DEFAULT_FUTURE_SKEW_SECONDS = 300


@dataclass(frozen=True)
class SignatureVerification:
    valid: bool
    signature: str
    timestamp: str
    error: Optional[str] = None


def _header(headers: Mapping[str, str], name: str) -> str:
    """Case-insensitive header lookup that works for plain dicts too."""
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    if value is None:
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                value = candidate
                break
    return str(value).strip() if value else ""


def compute_payload_hash(body: bytes) -> str:
    """SHA-256 of the raw payload, for audit."""
    return hashlib.sha256(body).hexdigest()


class SignatureVerifier:
    """HMAC-SHA256 signature + replay-window check for provider webhooks."""

    def __init__(
        self,
        secret: str,
        max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
        future_skew_seconds: int = DEFAULT_FUTURE_SKEW_SECONDS,
        header_prefix: str = "sha256=",
    ):
        if not secret:
            raise ValueError("Webhook secret is required")
        self._secret = secret.encode("utf-8")
        self.max_age_seconds = max_age_seconds
        self.future_skew_seconds = future_skew_seconds
        self.header_prefix = header_prefix

    def _digest(self, timestamp: str, body: bytes) -> bytes:
        signed = timestamp.encode("utf-8") + b"." + body
        return hmac.new(self._secret, signed, hashlib.sha256).digest()

    def sign(self, timestamp: str, body: bytes) -> str:
        """Hex signature for `body` at `timestamp`, as a provider would send it."""
        return self._digest(timestamp, body).hex()

    def _decode_signature(self, signature: str) -> Optional[bytes]:
        sig = signature
        if self.header_prefix and sig.startswith(self.header_prefix):
            sig = sig[len(self.header_prefix):]
        # 64 hex chars is a SHA-256 digest; anything else is tried as base64
        if len(sig) == 64:
            try:
                return bytes.fromhex(sig)
            except ValueError:
                pass
        try:
            return base64.b64decode(sig, validate=True)
        except (binascii.Error, ValueError):
            return None

    def _check_timestamp(self, timestamp: str, now: float) -> Optional[str]:
        try:
            ts = int(timestamp)
        except (TypeError, ValueError):
            return "Invalid timestamp format"

        age = int(now) - ts
        if age > self.max_age_seconds:
            return f"Timestamp too old: {age}s (max: {self.max_age_seconds}s)"
        if age < -self.future_skew_seconds:
            return f"Timestamp too far in future: {abs(age)}s"
        return None

    def verify(
        self,
        headers: Mapping[str, str],
        raw_body: bytes,
        now: Optional[float] = None,
    ) -> SignatureVerification:
        """
        Verify signature and freshness of one webhook request.

        Args:
            headers: Request headers (any casing)
            raw_body: Exact request body bytes
            now: Current unix time, for tests

        Returns:
            SignatureVerification with valid=False and an error on any failure
        """
        signature = _header(headers, SIGNATURE_HEADER)
        timestamp = _header(headers, TIMESTAMP_HEADER)

        if not signature or not timestamp:
            return SignatureVerification(
                valid=False,
                signature=signature,
                timestamp=timestamp,
                error="Missing signature or timestamp headers",
            )

        timestamp_error = self._check_timestamp(
            timestamp, time.time() if now is None else now,
        )
        if timestamp_error:
            logger.warning("Webhook timestamp rejected: %s", timestamp_error)
            return SignatureVerification(False, signature, timestamp, timestamp_error)

        received = self._decode_signature(signature)
        expected = self._digest(timestamp, raw_body)
        if received is None or not hmac.compare_digest(expected, received):
            logger.warning(
                "Webhook signature mismatch: timestamp=%s payload_bytes=%d",
                timestamp, len(raw_body),
            )
            return SignatureVerification(
                False, signature, timestamp, "Signature verification failed",
            )

        logger.debug("Webhook signature verified (payload_bytes=%d)", len(raw_body))
        return SignatureVerification(True, signature, timestamp)
