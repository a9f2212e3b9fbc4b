"""HMAC attestations binding a wallet identity to a GitHub account."""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass


class SignatureError(ValueError):
    """Raised when a recipient proof fails verification."""


@dataclass
class AttestationVerifier:
    """Sign and verify proofs issued by the identity bridge."""

    secret: bytes
    tolerance_seconds: int = 300

    def _message(self, voucher: str, recipient: str, github_id: int, issued_at: int) -> bytes:
        try:
            return b"|".join([voucher.encode(), recipient.encode(), str(github_id).encode(), str(issued_at).encode()])
        except UnicodeEncodeError as e:
            raise SignatureError(f"proof fields are not valid UTF-8 text: {e.reason}") from e

    def sign(self, *, voucher: str, recipient: str, github_id: int, issued_at: int) -> str:
        message = self._message(voucher, recipient, github_id, issued_at)
        return hmac.new(self.secret, message, hashlib.sha256).hexdigest()

    def verify(
        self,
        *,
        voucher: str,
        recipient: str,
        github_id: int,
        issued_at: int,
        signature: str,
        now: int,
    ) -> None:
        if abs(now - issued_at) > self.tolerance_seconds:
            raise SignatureError("proof timestamp outside tolerance")

        expected = self.sign(voucher=voucher, recipient=recipient, github_id=github_id, issued_at=issued_at)
        if not signature.isascii() or not hmac.compare_digest(expected, signature):
            raise SignatureError("invalid proof signature")
