"""
PostgreSQL repository adapters - Implement the repository protocols.

This module provides the PostgreSQL implementation of the domain's
repository ports using psycopg3 with raw SQL.

Concurrency Design - Conditional Updates:
-----------------------------------------
Every state change that must happen at most once is a single conditional
statement whose WHERE clause names the expected current state:

1. **Pending insert**: a partial UNIQUE index on email over the active
   states means two concurrent registrations cannot both insert;
   ``ON CONFLICT DO NOTHING`` reports the loser via rowcount.

2. **Challenge consumption**: ``DELETE ... WHERE code_hash = %s AND
   attempts_remaining > 0``; exactly one caller sees rowcount 1.

3. **State transitions**: ``UPDATE ... WHERE state = %s``; rowcount tells
   the caller whether it performed the transition.

4. **Finalization**: the COMPLETED transition and the account INSERT run
   in one transaction, so an account exists if and only if the pending
   registration reached COMPLETED. The UNIQUE constraints on
   accounts.registration_id and accounts.email back this up.

No read-then-write sequences are used for these guarantees, so they hold
across server instances sharing the database.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from psycopg import errors
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

from src.domain.ports import (
    ACTIVE_STATES,
    Account,
    AccountKind,
    OtpChallenge,
    PaymentIntentRecord,
    PaymentProvider,
    PaymentStatus,
    PendingRegistration,
    RegistrationState,
)

logger = logging.getLogger(__name__)

_ACTIVE = tuple(state.value for state in ACTIVE_STATES)

# An open or confirmed intent pins its registration against expiry.
_NOT_HOLDING_PAYMENT = """
    NOT EXISTS (
        SELECT 1 FROM payment_intents i
        WHERE i.registration_id = pending_registrations.registration_id
          AND i.status IN ('CREATED', 'CONFIRMED')
    )
"""

_PENDING_COLUMNS = (
    "registration_id, email, account_kind, profile, password_hash, state, created_at, expires_at"
)
_CHALLENGE_COLUMNS = "registration_id, code_hash, attempts_remaining, issued_at, expires_at, resend_count"
_ACCOUNT_COLUMNS = "account_id, registration_id, email, account_kind, profile, password_hash, created_at"
_INTENT_COLUMNS = (
    "provider_intent_id, registration_id, provider, amount_cents, currency, client_secret, status, created_at"
)


def _pending_from_row(row: dict[str, Any]) -> PendingRegistration:
    return PendingRegistration(
        registration_id=str(row["registration_id"]),
        email=row["email"],
        account_kind=AccountKind(row["account_kind"]),
        profile=row["profile"] or {},
        password_hash=row["password_hash"],
        state=RegistrationState(row["state"]),
        created_at=row["created_at"],
        expires_at=row["expires_at"],
    )


def _challenge_from_row(row: dict[str, Any]) -> OtpChallenge:
    return OtpChallenge(
        registration_id=str(row["registration_id"]),
        code_hash=row["code_hash"],
        attempts_remaining=row["attempts_remaining"],
        issued_at=row["issued_at"],
        expires_at=row["expires_at"],
        resend_count=row["resend_count"],
    )


def _account_from_row(row: dict[str, Any]) -> Account:
    return Account(
        account_id=str(row["account_id"]),
        registration_id=str(row["registration_id"]),
        email=row["email"],
        account_kind=AccountKind(row["account_kind"]),
        profile=row["profile"] or {},
        password_hash=row["password_hash"],
        created_at=row["created_at"],
    )


def _intent_from_row(row: dict[str, Any]) -> PaymentIntentRecord:
    return PaymentIntentRecord(
        provider_intent_id=row["provider_intent_id"],
        registration_id=str(row["registration_id"]),
        provider=PaymentProvider(row["provider"]),
        amount_cents=row["amount_cents"],
        currency=row["currency"],
        client_secret=row["client_secret"],
        status=PaymentStatus(row["status"]),
        created_at=row["created_at"],
    )


class PostgresRegistrationRepository:
    """
    Implements RegistrationRepository protocol via psycopg3.

    Uses structural subtyping - no explicit inheritance from Protocol.
    All SQL uses parameterized queries for security.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """
        Initialize repository with connection pool.

        Args:
            pool: psycopg3 ConnectionPool for database connections
        """
        self._pool = pool

    def insert_pending(self, pending: PendingRegistration, challenge: OtpChallenge) -> bool:
        """
        Insert a pending registration and its first challenge in one transaction.

        Registrations for the same email that are past their deadline are
        expired first so they no longer hold the active-email index, unless
        a payment intent still pins them.
        """
        expire_sql = f"""
            UPDATE pending_registrations
            SET state = 'EXPIRED'
            WHERE email = %s AND state = ANY(%s) AND expires_at <= %s
              AND {_NOT_HOLDING_PAYMENT}
        """
        insert_sql = f"""
            INSERT INTO pending_registrations ({_PENDING_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (email) WHERE state IN ('AWAITING_VERIFICATION', 'VERIFIED', 'AWAITING_PAYMENT')
            DO NOTHING
        """
        challenge_sql = f"""
            INSERT INTO otp_challenges ({_CHALLENGE_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s)
        """

        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(expire_sql, (pending.email, list(_ACTIVE), pending.created_at))
            cursor.execute(
                insert_sql,
                (
                    pending.registration_id,
                    pending.email,
                    pending.account_kind.value,
                    Jsonb(pending.profile),
                    pending.password_hash,
                    pending.state.value,
                    pending.created_at,
                    pending.expires_at,
                ),
            )
            if cursor.rowcount != 1:
                conn.rollback()
                return False
            cursor.execute(
                challenge_sql,
                (
                    challenge.registration_id,
                    challenge.code_hash,
                    challenge.attempts_remaining,
                    challenge.issued_at,
                    challenge.expires_at,
                    challenge.resend_count,
                ),
            )
            conn.commit()
            return True

    def find_active_by_email(self, email: str, now: datetime) -> PendingRegistration | None:
        """Return the active registration for email, lazily expiring a stale one."""
        expire_sql = f"""
            UPDATE pending_registrations
            SET state = 'EXPIRED'
            WHERE email = %s AND state = ANY(%s) AND expires_at <= %s
              AND {_NOT_HOLDING_PAYMENT}
            RETURNING registration_id
        """
        select_sql = f"""
            SELECT {_PENDING_COLUMNS}
            FROM pending_registrations
            WHERE email = %s AND state = ANY(%s)
        """

        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(expire_sql, (email, list(_ACTIVE), now))
            expired = [row["registration_id"] for row in cursor.fetchall()]
            if expired:
                cursor.execute("DELETE FROM otp_challenges WHERE registration_id = ANY(%s)", (expired,))
                logger.info("Lazily expired pending registration(s): %s", ", ".join(map(str, expired)))
            cursor.execute(select_sql, (email, list(_ACTIVE)))
            row = cursor.fetchone()
            conn.commit()
            return _pending_from_row(row) if row else None

    def get(self, registration_id: str) -> PendingRegistration | None:
        sql = f"SELECT {_PENDING_COLUMNS} FROM pending_registrations WHERE registration_id = %s"
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(sql, (registration_id,))
            row = cursor.fetchone()
            return _pending_from_row(row) if row else None

    def get_challenge(self, registration_id: str) -> OtpChallenge | None:
        sql = f"SELECT {_CHALLENGE_COLUMNS} FROM otp_challenges WHERE registration_id = %s"
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(sql, (registration_id,))
            row = cursor.fetchone()
            return _challenge_from_row(row) if row else None

    def reissue_challenge(
        self, registration_id: str, code_hash: str, issued_at: datetime, expires_at: datetime, attempts: int
    ) -> OtpChallenge | None:
        """
        Upsert a fresh challenge while the registration awaits verification.

        The registration deadline is pushed out so it never ends before
        the new code does.
        """
        upsert_sql = f"""
            INSERT INTO otp_challenges ({_CHALLENGE_COLUMNS})
            SELECT registration_id, %s, %s, %s, %s, 1
            FROM pending_registrations
            WHERE registration_id = %s AND state = 'AWAITING_VERIFICATION'
            ON CONFLICT (registration_id) DO UPDATE
            SET code_hash = EXCLUDED.code_hash,
                attempts_remaining = EXCLUDED.attempts_remaining,
                issued_at = EXCLUDED.issued_at,
                expires_at = EXCLUDED.expires_at,
                resend_count = otp_challenges.resend_count + 1
            RETURNING {_CHALLENGE_COLUMNS}
        """
        extend_sql = """
            UPDATE pending_registrations
            SET expires_at = GREATEST(expires_at, %s)
            WHERE registration_id = %s AND state = 'AWAITING_VERIFICATION'
        """

        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(upsert_sql, (code_hash, attempts, issued_at, expires_at, registration_id))
            row = cursor.fetchone()
            if row is None:
                conn.rollback()
                return None
            cursor.execute(extend_sql, (expires_at, registration_id))
            conn.commit()
            return _challenge_from_row(row)

    def record_failed_attempt(self, registration_id: str) -> int:
        sql = """
            UPDATE otp_challenges
            SET attempts_remaining = GREATEST(attempts_remaining - 1, 0)
            WHERE registration_id = %s
            RETURNING attempts_remaining
        """
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (registration_id,))
            row = cursor.fetchone()
            conn.commit()
            return row[0] if row else 0

    def consume_challenge(self, registration_id: str, code_hash: str) -> bool:
        sql = """
            DELETE FROM otp_challenges
            WHERE registration_id = %s AND code_hash = %s AND attempts_remaining > 0
        """
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (registration_id, code_hash))
            conn.commit()
            return cursor.rowcount == 1

    def transition(
        self,
        registration_id: str,
        from_state: RegistrationState,
        to_state: RegistrationState,
        expires_at: datetime | None = None,
    ) -> bool:
        sql = """
            UPDATE pending_registrations
            SET state = %s, expires_at = COALESCE(%s, expires_at)
            WHERE registration_id = %s AND state = %s
        """
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (to_state.value, expires_at, registration_id, from_state.value))
            conn.commit()
            return cursor.rowcount == 1

    def expire_stale(self, now: datetime) -> int:
        """
        Expire active registrations past their deadline.

        Registrations holding a CREATED or CONFIRMED payment are left
        alone. Abandoned CREATED intents are voided by the payment gate
        first; the next run then expires the registration.
        """
        expire_sql = f"""
            UPDATE pending_registrations
            SET state = 'EXPIRED'
            WHERE state = ANY(%s)
              AND expires_at <= %s
              AND {_NOT_HOLDING_PAYMENT}
            RETURNING registration_id
        """
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(expire_sql, (list(_ACTIVE), now))
            expired = [row[0] for row in cursor.fetchall()]
            if expired:
                cursor.execute("DELETE FROM otp_challenges WHERE registration_id = ANY(%s)", (expired,))
            conn.commit()
            return len(expired)


class PostgresAccountRepository:
    """Implements AccountRepository protocol via psycopg3."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def exists_for_email(self, email: str) -> bool:
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute("SELECT 1 FROM accounts WHERE email = %s", (email,))
            return cursor.fetchone() is not None

    def finalize(self, account: Account, expected_state: RegistrationState) -> bool:
        """
        Complete the pending registration and insert the account atomically.

        Returns False, leaving nothing written, if the registration was not
        in expected_state or the account constraints reject the insert.
        """
        complete_sql = """
            UPDATE pending_registrations
            SET state = 'COMPLETED'
            WHERE registration_id = %s AND state = %s
        """
        insert_sql = f"""
            INSERT INTO accounts ({_ACCOUNT_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s)
        """

        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(complete_sql, (account.registration_id, expected_state.value))
            if cursor.rowcount != 1:
                conn.rollback()
                return False
            try:
                cursor.execute(
                    insert_sql,
                    (
                        account.account_id,
                        account.registration_id,
                        account.email,
                        account.account_kind.value,
                        Jsonb(account.profile),
                        account.password_hash,
                        account.created_at,
                    ),
                )
            except errors.UniqueViolation:
                conn.rollback()
                logger.warning("Account insert rejected by unique constraint: registration_id=%s", account.registration_id)
                return False
            conn.commit()
            return True

    def get_by_registration(self, registration_id: str) -> Account | None:
        sql = f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE registration_id = %s"
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(sql, (registration_id,))
            row = cursor.fetchone()
            return _account_from_row(row) if row else None


class PostgresPaymentIntentRepository:
    """Implements PaymentIntentRepository protocol via psycopg3."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def insert(self, record: PaymentIntentRecord) -> PaymentIntentRecord:
        """Insert a CREATED intent; on an open-intent conflict return the existing one."""
        insert_sql = f"""
            INSERT INTO payment_intents ({_INTENT_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (registration_id) WHERE status IN ('CREATED', 'CONFIRMED')
            DO NOTHING
            RETURNING {_INTENT_COLUMNS}
        """
        existing_sql = f"""
            SELECT {_INTENT_COLUMNS}
            FROM payment_intents
            WHERE registration_id = %s AND status IN ('CREATED', 'CONFIRMED')
        """

        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(
                insert_sql,
                (
                    record.provider_intent_id,
                    record.registration_id,
                    record.provider.value,
                    record.amount_cents,
                    record.currency,
                    record.client_secret,
                    record.status.value,
                    record.created_at,
                ),
            )
            row = cursor.fetchone()
            if row is None:
                cursor.execute(existing_sql, (record.registration_id,))
                row = cursor.fetchone()
            conn.commit()
            return _intent_from_row(row)

    def find_open(self, registration_id: str) -> PaymentIntentRecord | None:
        sql = f"""
            SELECT {_INTENT_COLUMNS}
            FROM payment_intents
            WHERE registration_id = %s AND status = 'CREATED'
        """
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(sql, (registration_id,))
            row = cursor.fetchone()
            return _intent_from_row(row) if row else None

    def get(self, provider_intent_id: str) -> PaymentIntentRecord | None:
        sql = f"SELECT {_INTENT_COLUMNS} FROM payment_intents WHERE provider_intent_id = %s"
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(sql, (provider_intent_id,))
            row = cursor.fetchone()
            return _intent_from_row(row) if row else None

    def transition(self, provider_intent_id: str, from_status: PaymentStatus, to_status: PaymentStatus) -> bool:
        sql = """
            UPDATE payment_intents
            SET status = %s, updated_at = NOW()
            WHERE provider_intent_id = %s AND status = %s
        """
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (to_status.value, provider_intent_id, from_status.value))
            conn.commit()
            return cursor.rowcount == 1

    def find_abandoned(self, now: datetime) -> list[PaymentIntentRecord]:
        sql = f"""
            SELECT i.provider_intent_id, i.registration_id, i.provider, i.amount_cents,
                   i.currency, i.client_secret, i.status, i.created_at
            FROM payment_intents i
            JOIN pending_registrations p ON p.registration_id = i.registration_id
            WHERE i.status = 'CREATED' AND p.state = ANY(%s) AND p.expires_at <= %s
            ORDER BY i.created_at
        """
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(sql, (list(_ACTIVE), now))
            return [_intent_from_row(row) for row in cursor.fetchall()]


def run_migrations(pool: ConnectionPool) -> None:
    """
    Execute all SQL migration files from the migrations directory.

    Migrations are executed in sorted order (alphabetically by filename).
    Each migration should be idempotent (use IF NOT EXISTS, etc.).

    Args:
        pool: psycopg3 ConnectionPool instance
    """
    # Structure: src/adapters/repository/postgres.py -> migrations/
    migrations_dir = Path(__file__).parent.parent.parent.parent / "migrations"

    if not migrations_dir.exists():
        logger.warning(f"Migrations directory not found: {migrations_dir}")
        return

    sql_files = sorted(migrations_dir.glob("*.sql"))

    if not sql_files:
        logger.info("No migration files found")
        return

    logger.info(f"Running {len(sql_files)} migration(s)")

    for sql_file in sql_files:
        logger.info(f"Executing migration: {sql_file.name}")
        try:
            sql_content = sql_file.read_text()

            with pool.connection() as conn:
                conn.execute(sql_content)

            logger.info(f"Migration complete: {sql_file.name}")
        except Exception as e:
            logger.error(f"Migration failed: {sql_file.name} - {e}")
            raise RuntimeError(f"Database migration failed: {sql_file.name}") from e
