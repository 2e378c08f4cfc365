"""
Unit tests for the in-process repositories.

Tests verify the compare-and-swap semantics the domain relies on:
- One active pending registration per email
- Lazy and reaper expiry, never while a payment intent is open
- Conditional challenge consumption and attempt counting
- Atomic finalize
- One open payment intent per registration
"""

from datetime import timedelta

import pytest

from src.adapters.repository.memory import (
    InMemoryAccountRepository,
    InMemoryPaymentIntentRepository,
    InMemoryRegistrationRepository,
)
from src.domain.ports import (
    Account,
    AccountKind,
    OtpChallenge,
    PaymentIntentRecord,
    PaymentProvider,
    PaymentStatus,
    PendingRegistration,
    RegistrationState,
)
from tests.conftest import FakeClock


def make_pending(clock: FakeClock, registration_id: str = "reg-1", email: str = "a@example.com") -> PendingRegistration:
    now = clock()
    return PendingRegistration(
        registration_id=registration_id,
        email=email,
        account_kind=AccountKind.STUDENT,
        profile={"first_name": "Amara"},
        password_hash="$2b$04$hash",
        state=RegistrationState.AWAITING_VERIFICATION,
        created_at=now,
        expires_at=now + timedelta(hours=1),
    )


def make_challenge(clock: FakeClock, registration_id: str = "reg-1", code_hash: str = "h1") -> OtpChallenge:
    now = clock()
    return OtpChallenge(
        registration_id=registration_id,
        code_hash=code_hash,
        attempts_remaining=5,
        issued_at=now,
        expires_at=now + timedelta(minutes=10),
    )


def make_intent(clock: FakeClock, intent_id: str = "pi_1", registration_id: str = "reg-1") -> PaymentIntentRecord:
    return PaymentIntentRecord(
        provider_intent_id=intent_id,
        registration_id=registration_id,
        provider=PaymentProvider.STRIPE,
        amount_cents=2500,
        currency="usd",
        client_secret="secret",
        status=PaymentStatus.CREATED,
        created_at=clock(),
    )


@pytest.fixture
def stored(registrations: InMemoryRegistrationRepository, clock: FakeClock) -> PendingRegistration:
    pending = make_pending(clock)
    assert registrations.insert_pending(pending, make_challenge(clock))
    return pending


class TestPendingRegistrations:
    def test_second_active_registration_for_email_refused(
        self, registrations: InMemoryRegistrationRepository, stored: PendingRegistration, clock: FakeClock
    ) -> None:
        other = make_pending(clock, registration_id="reg-2")
        assert registrations.insert_pending(other, make_challenge(clock, "reg-2")) is False

    def test_expired_registration_does_not_block_email(
        self, registrations: InMemoryRegistrationRepository, stored: PendingRegistration, clock: FakeClock
    ) -> None:
        clock.advance(3601)
        other = make_pending(clock, registration_id="reg-2")
        assert registrations.insert_pending(other, make_challenge(clock, "reg-2")) is True
        assert registrations.get("reg-1").state is RegistrationState.EXPIRED

    def test_find_active_expires_lazily(
        self, registrations: InMemoryRegistrationRepository, stored: PendingRegistration, clock: FakeClock
    ) -> None:
        clock.advance(3601)
        assert registrations.find_active_by_email("a@example.com", clock()) is None
        assert registrations.get("reg-1").state is RegistrationState.EXPIRED

    def test_transition_is_compare_and_swap(
        self, registrations: InMemoryRegistrationRepository, stored: PendingRegistration
    ) -> None:
        assert registrations.transition(
            "reg-1", RegistrationState.AWAITING_VERIFICATION, RegistrationState.VERIFIED
        )
        assert not registrations.transition(
            "reg-1", RegistrationState.AWAITING_VERIFICATION, RegistrationState.VERIFIED
        )

    def test_transition_can_extend_deadline(
        self, registrations: InMemoryRegistrationRepository, stored: PendingRegistration, clock: FakeClock
    ) -> None:
        deadline = clock() + timedelta(days=1)
        registrations.transition(
            "reg-1", RegistrationState.AWAITING_VERIFICATION, RegistrationState.VERIFIED, expires_at=deadline
        )
        assert registrations.get("reg-1").expires_at == deadline

    def test_expire_stale_skips_paid_registrations(
        self,
        registrations: InMemoryRegistrationRepository,
        intents: InMemoryPaymentIntentRepository,
        clock: FakeClock,
    ) -> None:
        registrations.insert_pending(make_pending(clock), make_challenge(clock))
        registrations.insert_pending(
            make_pending(clock, "reg-2", "b@example.com"), make_challenge(clock, "reg-2")
        )
        intents.insert(make_intent(clock, registration_id="reg-2"))
        intents.transition("pi_1", PaymentStatus.CREATED, PaymentStatus.CONFIRMED)

        clock.advance(3601)

        assert registrations.expire_stale(clock()) == 1
        assert registrations.get("reg-1").state is RegistrationState.EXPIRED
        assert registrations.get("reg-2").state is RegistrationState.AWAITING_VERIFICATION

    def test_open_intent_blocks_every_expiry_path(
        self,
        registrations: InMemoryRegistrationRepository,
        intents: InMemoryPaymentIntentRepository,
        stored: PendingRegistration,
        clock: FakeClock,
    ) -> None:
        intents.insert(make_intent(clock))
        clock.advance(3601)

        assert registrations.expire_stale(clock()) == 0
        assert registrations.find_active_by_email("a@example.com", clock()).registration_id == "reg-1"
        assert registrations.insert_pending(make_pending(clock, "reg-2"), make_challenge(clock, "reg-2")) is False
        assert registrations.get("reg-1").state is RegistrationState.AWAITING_VERIFICATION
        assert registrations.get_challenge("reg-1") is not None

    def test_failed_intent_no_longer_blocks_expiry(
        self,
        registrations: InMemoryRegistrationRepository,
        intents: InMemoryPaymentIntentRepository,
        stored: PendingRegistration,
        clock: FakeClock,
    ) -> None:
        intents.insert(make_intent(clock))
        intents.transition("pi_1", PaymentStatus.CREATED, PaymentStatus.FAILED)
        clock.advance(3601)

        assert registrations.expire_stale(clock()) == 1
        assert registrations.get("reg-1").state is RegistrationState.EXPIRED


class TestChallenges:
    def test_failed_attempts_floor_at_zero(
        self, registrations: InMemoryRegistrationRepository, stored: PendingRegistration
    ) -> None:
        results = [registrations.record_failed_attempt("reg-1") for _ in range(7)]
        assert results == [4, 3, 2, 1, 0, 0, 0]

    def test_consume_is_single_use(
        self, registrations: InMemoryRegistrationRepository, stored: PendingRegistration
    ) -> None:
        assert registrations.consume_challenge("reg-1", "h1") is True
        assert registrations.consume_challenge("reg-1", "h1") is False
        assert registrations.get_challenge("reg-1") is None

    def test_consume_requires_current_hash(
        self, registrations: InMemoryRegistrationRepository, stored: PendingRegistration
    ) -> None:
        assert registrations.consume_challenge("reg-1", "stale") is False

    def test_consume_refused_when_attempts_exhausted(
        self, registrations: InMemoryRegistrationRepository, stored: PendingRegistration
    ) -> None:
        for _ in range(5):
            registrations.record_failed_attempt("reg-1")
        assert registrations.consume_challenge("reg-1", "h1") is False

    def test_reissue_increments_resend_count_and_extends_deadline(
        self, registrations: InMemoryRegistrationRepository, stored: PendingRegistration, clock: FakeClock
    ) -> None:
        clock.advance(3500)
        challenge = registrations.reissue_challenge(
            "reg-1", "h2", issued_at=clock(), expires_at=clock() + timedelta(minutes=10), attempts=5
        )
        assert challenge.resend_count == 1
        assert challenge.code_hash == "h2"
        assert registrations.get("reg-1").expires_at == clock() + timedelta(minutes=10)

    def test_reissue_refused_after_verification(
        self, registrations: InMemoryRegistrationRepository, stored: PendingRegistration, clock: FakeClock
    ) -> None:
        registrations.transition("reg-1", RegistrationState.AWAITING_VERIFICATION, RegistrationState.VERIFIED)
        assert registrations.reissue_challenge("reg-1", "h2", clock(), clock(), 5) is None


class TestAccounts:
    def test_finalize_is_atomic_and_single_shot(
        self,
        registrations: InMemoryRegistrationRepository,
        accounts: InMemoryAccountRepository,
        stored: PendingRegistration,
        clock: FakeClock,
    ) -> None:
        registrations.transition("reg-1", RegistrationState.AWAITING_VERIFICATION, RegistrationState.AWAITING_PAYMENT)
        account = Account(
            account_id="acc-1",
            registration_id="reg-1",
            email="a@example.com",
            account_kind=AccountKind.STUDENT,
            profile={},
            password_hash="$2b$04$hash",
            created_at=clock(),
        )

        assert accounts.finalize(account, RegistrationState.AWAITING_PAYMENT) is True
        assert accounts.finalize(account, RegistrationState.AWAITING_PAYMENT) is False
        assert registrations.get("reg-1").state is RegistrationState.COMPLETED
        assert accounts.get_by_registration("reg-1") == account
        assert accounts.count_for_email("a@example.com") == 1

    def test_finalize_refused_in_wrong_state(
        self, accounts: InMemoryAccountRepository, stored: PendingRegistration, clock: FakeClock
    ) -> None:
        account = Account("acc-1", "reg-1", "a@example.com", AccountKind.STUDENT, {}, "h", clock())
        assert accounts.finalize(account, RegistrationState.AWAITING_PAYMENT) is False
        assert not accounts.exists_for_email("a@example.com")


class TestPaymentIntents:
    def test_one_open_intent_per_registration(
        self, intents: InMemoryPaymentIntentRepository, clock: FakeClock
    ) -> None:
        first = intents.insert(make_intent(clock, "pi_1"))
        second = intents.insert(make_intent(clock, "pi_2"))
        assert second == first
        assert intents.get("pi_2") is None

    def test_failed_intent_allows_new_one(self, intents: InMemoryPaymentIntentRepository, clock: FakeClock) -> None:
        intents.insert(make_intent(clock, "pi_1"))
        intents.transition("pi_1", PaymentStatus.CREATED, PaymentStatus.FAILED)
        assert intents.insert(make_intent(clock, "pi_2")).provider_intent_id == "pi_2"
        assert intents.find_open("reg-1").provider_intent_id == "pi_2"

    def test_transition_is_compare_and_swap(self, intents: InMemoryPaymentIntentRepository, clock: FakeClock) -> None:
        intents.insert(make_intent(clock))
        assert intents.transition("pi_1", PaymentStatus.CREATED, PaymentStatus.CONFIRMED) is True
        assert intents.transition("pi_1", PaymentStatus.CREATED, PaymentStatus.CONFIRMED) is False
        assert intents.find_open("reg-1") is None

    def test_find_abandoned_lists_open_intents_past_deadline(
        self,
        registrations: InMemoryRegistrationRepository,
        intents: InMemoryPaymentIntentRepository,
        stored: PendingRegistration,
        clock: FakeClock,
    ) -> None:
        registrations.insert_pending(make_pending(clock, "reg-2", "b@example.com"), make_challenge(clock, "reg-2"))
        intents.insert(make_intent(clock, "pi_1", "reg-1"))
        intents.insert(make_intent(clock, "pi_2", "reg-2"))
        intents.transition("pi_2", PaymentStatus.CREATED, PaymentStatus.CONFIRMED)

        assert intents.find_abandoned(clock()) == []

        clock.advance(3601)

        assert [record.provider_intent_id for record in intents.find_abandoned(clock())] == ["pi_1"]
