"""
One-time code generation and hashing.

Codes are numeric, generated with the secrets module, and stored only as
an HMAC-SHA256 digest keyed with a server secret and bound to the
registration id, so a leaked table cannot be brute-forced offline and a
code for one registration never verifies another.
"""

import hashlib
import hmac
import secrets
from dataclasses import dataclass


@dataclass(frozen=True)
class OtpCodec:
    """Generates codes and compares them in constant time."""

    secret: str
    length: int = 6

    def generate(self) -> str:
        """
        Generate a cryptographically secure numeric code.

        Returns string to preserve leading zeros.
        """
        return "".join(secrets.choice("0123456789") for _ in range(self.length))

    def hash(self, registration_id: str, code: str) -> str:
        message = f"{registration_id}:{code}".encode()
        return hmac.new(self.secret.encode(), message, hashlib.sha256).hexdigest()

    def matches(self, registration_id: str, code: str, code_hash: str) -> bool:
        """Constant-time comparison of a submitted code against the stored hash."""
        candidate = self.hash(registration_id, code)
        return secrets.compare_digest(candidate.encode(), code_hash.encode())
