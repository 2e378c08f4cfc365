"""
Token service - verified continuation tokens and session tokens.

Both token types are HS256 JWTs carrying fixed issuer/audience claims and
a ``typ`` claim so one can never be presented in place of the other.

- Verified token: proves {registration_id, email, account_kind} passed
  email verification. The client carries it into the payment gate so the
  server keeps no session between the two steps.
- Session token: issued by the account finalizer. Its iat/exp derive from
  the account creation time, so every issuance for the same account is
  byte-identical and repeated confirmations return the same value.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

import jwt

from .exceptions import Expired, InvalidToken
from .ports import Account, AccountKind, PendingRegistration

VERIFIED_TOKEN_TYPE = "verified"
SESSION_TOKEN_TYPE = "session"


@dataclass(frozen=True)
class VerifiedClaims:
    """Decoded contents of a verified token."""

    registration_id: str
    email: str
    account_kind: AccountKind


@dataclass(frozen=True)
class TokenService:
    """Mints and checks signed tokens."""

    secret_key: str
    issuer: str
    audience: str
    verified_ttl_seconds: int
    session_ttl_seconds: int
    algorithm: str = "HS256"

    def mint_verified(self, pending: PendingRegistration, now: datetime) -> str:
        payload = {
            "sub": pending.registration_id,
            "email": pending.email,
            "account_kind": pending.account_kind.value,
            "typ": VERIFIED_TOKEN_TYPE,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=self.verified_ttl_seconds)).timestamp()),
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def decode_verified(self, token: str) -> VerifiedClaims:
        """
        Verify signature, expiry, issuer, audience and type on every use.

        Raises:
            Expired: token is past its exp claim
            InvalidToken: anything else is wrong with the token
        """
        payload = self._decode(token)
        if payload.get("typ") != VERIFIED_TOKEN_TYPE:
            raise InvalidToken("Token is not a verification token")
        try:
            kind = AccountKind(payload["account_kind"])
            return VerifiedClaims(registration_id=payload["sub"], email=payload["email"], account_kind=kind)
        except (KeyError, ValueError):
            raise InvalidToken("Verification token is malformed") from None

    def issue_session(self, account: Account) -> str:
        payload = {
            "sub": account.account_id,
            "id": account.account_id,
            "email": account.email,
            "account_kind": account.account_kind.value,
            "verified": True,
            "typ": SESSION_TOKEN_TYPE,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": int(account.created_at.timestamp()),
            "exp": int((account.created_at + timedelta(seconds=self.session_ttl_seconds)).timestamp()),
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def decode_session(self, token: str) -> dict:
        payload = self._decode(token)
        if payload.get("typ") != SESSION_TOKEN_TYPE:
            raise InvalidToken("Token is not a session token")
        return payload

    def _decode(self, token: str) -> dict:
        try:
            return jwt.decode(
                token.strip(),
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
            )
        except jwt.ExpiredSignatureError:
            raise Expired("Verification has expired, please verify your email again") from None
        except jwt.PyJWTError:
            raise InvalidToken("Token is invalid") from None
