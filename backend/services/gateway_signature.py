"""Razorpay webhook signature verification.

Razorpay signs the raw request body with HMAC-SHA256 using the webhook secret
and sends the hex digest in X-Razorpay-Signature.
"""
import hashlib
import hmac
import logging
import os
from typing import Optional

from errors import AuthenticationError

logger = logging.getLogger(__name__)


def _get_webhook_secret() -> str:
    return (os.getenv("RAZORPAY_WEBHOOK_SECRET") or "").strip()


class RazorpaySignatureVerifier:
    def __init__(self, secret: Optional[str] = None):
        self._secret = secret

    def _secret_bytes(self) -> bytes:
        secret = self._secret if self._secret is not None else _get_webhook_secret()
        if not secret:
            raise AuthenticationError("RAZORPAY_WEBHOOK_SECRET is not configured; refusing unsigned webhook")
        return secret.encode("utf-8")

    def compute_signature(self, body: bytes) -> str:
        return hmac.new(self._secret_bytes(), body, hashlib.sha256).hexdigest()

    def verify(self, body: bytes, signature: Optional[str]) -> None:
        """Raise AuthenticationError unless signature matches body."""
        if not signature:
            raise AuthenticationError("Missing webhook signature")
        expected = self.compute_signature(body)
        if not hmac.compare_digest(expected, signature.strip()):
            raise AuthenticationError("Invalid webhook signature")


signature_verifier = RazorpaySignatureVerifier()
