"""
Account finalizer - the single code path that creates accounts.

finalize() is idempotent per pending registration. The repository moves
the pending registration to COMPLETED and inserts the account in one
atomic unit guarded by the expected state, so however many callers race
(verification, client confirmation, provider webhook), exactly one
creates the account and the others fetch it.
"""

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from .exceptions import InvariantViolation
from .ports import (
    FINALIZABLE_STATE,
    Account,
    AccountRepository,
    PendingRegistration,
    RegistrationState,
    WelcomeNotifier,
)
from .tokens import TokenService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FinalizedAccount:
    """The created (or previously created) account with its session token."""

    account: Account
    session_token: str


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class AccountFinalizer:
    """Promotes a pending registration to a durable account exactly once."""

    accounts: AccountRepository
    tokens: TokenService
    notifier: WelcomeNotifier
    clock: Callable[[], datetime] = _utc_now

    def finalize(self, pending: PendingRegistration) -> FinalizedAccount:
        """
        Create the account for a pending registration, or return the existing one.

        Raises:
            InvariantViolation: the registration is not in its finalizable
                state, or it claims completion without an account
        """
        if pending.state is RegistrationState.COMPLETED:
            return self._existing(pending)

        expected_state = FINALIZABLE_STATE[pending.account_kind]
        if pending.state is not expected_state:
            logger.critical(
                "Finalize called on registration in wrong state: id=%s kind=%s state=%s expected=%s",
                pending.registration_id,
                pending.account_kind.value,
                pending.state.value,
                expected_state.value,
            )
            raise InvariantViolation("Unable to complete registration")

        account = Account(
            account_id=str(uuid.uuid4()),
            registration_id=pending.registration_id,
            email=pending.email,
            account_kind=pending.account_kind,
            profile=dict(pending.profile),
            password_hash=pending.password_hash,
            created_at=self.clock(),
        )
        if not self.accounts.finalize(account, expected_state):
            logger.info("Registration already finalized by another caller: id=%s", pending.registration_id)
            return self._existing(pending)

        logger.info(
            "Account created: account_id=%s registration_id=%s kind=%s",
            account.account_id,
            account.registration_id,
            account.account_kind.value,
        )
        self.notifier.notify_welcome(account)
        return FinalizedAccount(account=account, session_token=self.tokens.issue_session(account))

    def _existing(self, pending: PendingRegistration) -> FinalizedAccount:
        account = self.accounts.get_by_registration(pending.registration_id)
        if account is None:
            logger.critical(
                "Registration finalized without an account: id=%s state=%s",
                pending.registration_id,
                pending.state.value,
            )
            raise InvariantViolation("Unable to complete registration")
        return FinalizedAccount(account=account, session_token=self.tokens.issue_session(account))
