"""Tests for the Stripe webhook endpoint."""

from fastapi import status

from storefront.domain.entities import PaymentIntent


def paid_intent(harness, intent_id: str = "pi_hook_1") -> PaymentIntent:
    intent = PaymentIntent(
        id=intent_id,
        amount=7500,
        currency="usd",
        status="succeeded",
        metadata={"session_id": "sess-hook", "customer_name": "Jane Doe"},
    )
    return harness.gateway.add(intent)


def post_event(client, body: bytes, signature: str | None):
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers["Stripe-Signature"] = signature
    return client.post("/api/webhook", content=body, headers=headers)


class TestWebhookEndpoint:
    """Tests for POST /api/webhook."""

    def test_processes_signed_event(self, client, harness, webhooks) -> None:
        """A verified payment_intent.succeeded records the order."""
        intent = paid_intent(harness)
        body = webhooks.event(
            "payment_intent.succeeded", webhooks.intent_object(intent), event_id="evt_ok"
        )

        response = post_event(client, body, webhooks.sign(body))

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["received"] is True
        assert data["status"] == "processed"
        assert data["eventId"] == "evt_ok"
        assert "recorded" in data["message"]
        assert len(harness.database_sink.records) == 1

    def test_missing_signature(self, client, webhooks) -> None:
        """Unsigned bodies are rejected."""
        body = webhooks.event("charge.succeeded", {"id": "ch_1"})

        response = post_event(client, body, None)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "INVALID_SIGNATURE"

    def test_bad_signature(self, client, harness, webhooks) -> None:
        """A signature from another secret is rejected without side effects."""
        intent = paid_intent(harness)
        body = webhooks.event("payment_intent.succeeded", webhooks.intent_object(intent))

        response = post_event(client, body, webhooks.sign(body, secret="whsec_other"))

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "INVALID_SIGNATURE"
        assert harness.database_sink.records == []

    def test_redelivery_is_duplicate(self, client, harness, webhooks) -> None:
        """The same event delivered twice is processed once."""
        intent = paid_intent(harness)
        body = webhooks.event(
            "payment_intent.succeeded", webhooks.intent_object(intent), event_id="evt_dup"
        )

        post_event(client, body, webhooks.sign(body))
        response = post_event(client, body, webhooks.sign(body))

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "duplicate"
        assert len(harness.database_sink.records) == 1

    def test_unhandled_type_is_ignored(self, client, webhooks) -> None:
        """Unknown event types are acknowledged."""
        body = webhooks.event("customer.created", {"id": "cus_1"})

        response = post_event(client, body, webhooks.sign(body))

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "ignored"

    def test_processing_failure_is_acknowledged(self, client, webhooks) -> None:
        """Handler failures return 200 with a failed status."""
        body = webhooks.event("charge.succeeded", {"id": "ch_1", "payment_intent": "pi_missing"})

        response = post_event(client, body, webhooks.sign(body))

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "failed"
