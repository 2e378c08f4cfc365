"""
Integration tests for the activation flows.

Drives the full student and donor flows through the HTTP API on the
in-process backend with sandbox payment gateways.
"""

import logging

import pytest
from fastapi.testclient import TestClient

from tests.conftest import RecordingEmailSender, RecordingNotifier

pytestmark = pytest.mark.integration

STUDENT = {
    "email": "Flow.Student@Example.com",
    "password": "Str0ng!Pass",
    "firstName": "Amara",
    "lastName": "Okafor",
    "school": "Lagos State University",
}
DONOR = {
    "email": "flow.donor@example.com",
    "password": "Str0ng!Pass",
    "firstName": "Jean",
    "lastName": "O'Neil",
    "phone": "+1 555 0100",
}


def outbox(client: TestClient) -> RecordingEmailSender:
    return client.app.state.email_sender


def welcomed(client: TestClient) -> RecordingNotifier:
    return client.app.state.notifier


class TestStudentFlow:
    """Register -> verify -> pay -> confirm."""

    def test_full_student_flow(self, client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO):
            response = client.post("/auth/register/student", json=STUDENT)
        assert response.status_code == 201
        body = response.json()
        assert body["nextStep"] == "verify_email"
        assert body["expiresInSeconds"] == 600
        assert "Pending registration created" in caplog.text

        email = "flow.student@example.com"
        code = outbox(client).last_code(email)
        assert code not in caplog.text

        response = client.post("/auth/verify-otp", json={"email": email, "otp": code})
        assert response.status_code == 200
        verified = response.json()
        assert verified["nextStep"] == "pay"
        assert "account" not in verified

        response = client.post(
            "/payment/create-intent", json={"verifiedToken": verified["token"], "provider": "stripe"}
        )
        assert response.status_code == 201
        intent = response.json()
        assert intent["amountCents"] == 2500
        assert intent["currency"] == "usd"
        assert intent["clientSecretOrApprovalUrl"].startswith(intent["providerIntentId"])

        response = client.post("/payment/confirm", json={"providerIntentId": intent["providerIntentId"]})
        assert response.status_code == 200
        confirmed = response.json()
        assert confirmed["account"]["email"] == email
        assert confirmed["account"]["accountKind"] == "student"
        assert confirmed["account"]["profile"]["school"] == "Lagos State University"
        assert "passwordHash" not in confirmed["account"]
        assert [account.email for account in welcomed(client).welcomed] == [email]

    def test_confirm_twice_returns_same_account(self, client: TestClient) -> None:
        client.post("/auth/register/student", json=STUDENT)
        email = "flow.student@example.com"
        token = client.post(
            "/auth/verify-otp", json={"email": email, "otp": outbox(client).last_code(email)}
        ).json()["token"]
        intent_id = client.post(
            "/payment/create-intent", json={"verifiedToken": token, "provider": "paypal"}
        ).json()["providerIntentId"]

        first = client.post("/payment/confirm", json={"providerIntentId": intent_id})
        second = client.post("/payment/confirm", json={"providerIntentId": intent_id})

        assert first.status_code == second.status_code == 200
        assert first.json() == second.json()
        assert len(welcomed(client).welcomed) == 1

    def test_registering_again_after_completion_conflicts(self, client: TestClient) -> None:
        client.post("/auth/register/student", json=STUDENT)
        email = "flow.student@example.com"
        token = client.post(
            "/auth/verify-otp", json={"email": email, "otp": outbox(client).last_code(email)}
        ).json()["token"]
        intent_id = client.post(
            "/payment/create-intent", json={"verifiedToken": token, "provider": "stripe"}
        ).json()["providerIntentId"]
        client.post("/payment/confirm", json={"providerIntentId": intent_id})

        response = client.post("/auth/register/student", json=STUDENT)

        assert response.status_code == 409
        assert response.json()["error"]["kind"] == "already_registered"


class TestDonorFlow:
    """Register -> verify -> done."""

    def test_full_donor_flow(self, client: TestClient) -> None:
        response = client.post("/auth/register/donor", json=DONOR)
        assert response.status_code == 201

        code = outbox(client).last_code(DONOR["email"])
        response = client.post("/auth/verify-otp", json={"email": DONOR["email"], "otp": code})

        assert response.status_code == 200
        body = response.json()
        assert body["nextStep"] == "done"
        assert body["accountKind"] == "donor"
        assert body["token"]
        assert body["account"]["profile"]["phone"] == "+1 555 0100"
        assert len(welcomed(client).welcomed) == 1

    def test_code_cannot_be_reused(self, client: TestClient) -> None:
        client.post("/auth/register/donor", json=DONOR)
        code = outbox(client).last_code(DONOR["email"])
        client.post("/auth/verify-otp", json={"email": DONOR["email"], "otp": code})

        response = client.post("/auth/verify-otp", json={"email": DONOR["email"], "otp": code})

        assert response.status_code == 404

    def test_resend_replaces_code(self, client: TestClient) -> None:
        first = client.post("/auth/register/donor", json=DONOR).json()
        old_code = outbox(client).last_code(DONOR["email"])

        assert client.post("/auth/resend-verification", json={"email": DONOR["email"]}).json() == {"ok": True}
        new_code = outbox(client).last_code(DONOR["email"])
        if new_code != old_code:
            stale = client.post("/auth/verify-otp", json={"email": DONOR["email"], "otp": old_code})
            assert stale.status_code == 401

        response = client.post("/auth/verify-otp", json={"email": DONOR["email"], "otp": new_code})
        assert response.status_code == 200
        assert response.json()["registrationId"] == first["registrationId"]

    def test_register_again_resumes_pending(self, client: TestClient) -> None:
        first = client.post("/auth/register/donor", json=DONOR).json()
        second = client.post("/auth/register/donor", json=DONOR).json()

        assert second["registrationId"] == first["registrationId"]
        assert len(outbox(client).messages) == 2
