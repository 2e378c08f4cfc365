"""
Adversarial tests for race condition attack prevention.

Verifies that concurrent operations on the same registration are handled
atomically, preventing attackers (or an unlucky client racing a webhook) from:
- Creating duplicate pending registrations for one email
- Creating two accounts from one payment
- Consuming one verification code twice
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from src.adapters.repository.memory import InMemoryAccountRepository, InMemoryState
from src.domain.exceptions import NotFound, RegistrationError
from src.domain.payment import PaymentGate
from src.domain.ports import AccountKind, RegistrationState
from src.domain.registration import RegistrationService
from src.domain.verification import VerificationService
from tests.conftest import STUDENT_PROFILE, TEST_PASSWORD, RecordingEmailSender, RecordingNotifier

# Apply adversarial marker to all tests in this module
pytestmark = pytest.mark.adversarial

NUM_ATTACKERS = 8


def run_concurrently(func, count: int = NUM_ATTACKERS) -> list:
    """Run func count times at once; returns results or raised exceptions."""
    barrier = threading.Barrier(count)

    def worker():
        barrier.wait()
        try:
            return func()
        except RegistrationError as e:
            return e

    with ThreadPoolExecutor(max_workers=count) as executor:
        futures = [executor.submit(worker) for _ in range(count)]
        return [f.result() for f in futures]


class TestConcurrentRegistration:
    def test_concurrent_registration_yields_one_pending(
        self, registration_service: RegistrationService, state: InMemoryState
    ) -> None:
        """
        Simulate attacker submitting the same email from many connections.

        Expected defense: one active pending registration; every caller is
        told the same registration id.
        """
        results = run_concurrently(
            lambda: registration_service.register(
                AccountKind.STUDENT, "race@example.com", TEST_PASSWORD, STUDENT_PROFILE
            )
        )

        ids = {r.registration_id for r in results}
        assert len(ids) == 1
        active = [
            p for p in state.pending.values()
            if p.email == "race@example.com" and p.state is RegistrationState.AWAITING_VERIFICATION
        ]
        assert len(active) == 1


class TestConcurrentVerification:
    def test_code_consumed_exactly_once(
        self,
        registration_service: RegistrationService,
        verification_service: VerificationService,
        email_sender: RecordingEmailSender,
    ) -> None:
        registration_service.register(AccountKind.STUDENT, "race@example.com", TEST_PASSWORD, STUDENT_PROFILE)
        code = email_sender.last_code("race@example.com")

        results = run_concurrently(lambda: verification_service.verify("race@example.com", code))

        successes = [r for r in results if not isinstance(r, Exception)]
        assert len(successes) == 1
        assert all(isinstance(r, NotFound) for r in results if isinstance(r, Exception))


class TestConcurrentConfirmation:
    def test_client_and_webhook_race_creates_one_account(
        self,
        payment_gate: PaymentGate,
        verified_student: str,
        accounts: InMemoryAccountRepository,
        notifier: RecordingNotifier,
    ) -> None:
        """
        Client confirmation racing provider webhooks for one intent.

        Expected defense: CREATED -> CONFIRMED is a conditional update and
        the finalizer is idempotent, so every caller gets the same account.
        """
        record = payment_gate.create_intent(verified_student, "stripe")

        results = run_concurrently(lambda: payment_gate.confirm(record.provider_intent_id))

        assert not [r for r in results if isinstance(r, Exception)]
        assert len({r.account.account_id for r in results}) == 1
        assert len({r.session_token for r in results}) == 1
        assert accounts.count_for_email("student@example.com") == 1
        assert len(notifier.welcomed) == 1

    def test_concurrent_intent_creation_opens_one_charge(
        self, payment_gate: PaymentGate, verified_student: str
    ) -> None:
        results = run_concurrently(lambda: payment_gate.create_intent(verified_student, "stripe"))

        assert not [r for r in results if isinstance(r, Exception)]
        assert len({r.provider_intent_id for r in results}) == 1
