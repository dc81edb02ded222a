"""Tests for payment API endpoints."""

from fastapi import status

from storefront.domain.exceptions import GatewayError


class TestCreatePaymentIntent:
    """Tests for POST /api/create-payment-intent."""

    def test_create_for_cart_total(self, client, harness, seed, session_id, bpc) -> None:
        """The intent is created for the cart total."""
        seed(harness, session_id, (bpc, 1, "5mg"))

        response = client.post(
            "/api/create-payment-intent",
            json={"firstName": "Jane", "lastName": "Doe", "affiliateCode": "REF10"},
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["amount"] == 100.0
        assert data["itemCount"] == 1
        assert data["clientSecret"] == f"{data['paymentIntentId']}_secret_abc"
        intent = harness.gateway.intents[data["paymentIntentId"]]
        assert intent.metadata["session_id"] == session_id
        assert intent.metadata["affiliate_code"] == "REF10"

    def test_amount_override(self, client) -> None:
        """An explicit amount is charged as given."""
        response = client.post(
            "/api/create-payment-intent",
            json={"amount": 42.5, "firstName": "Jane", "lastName": "Doe"},
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["amount"] == 42.5

    def test_empty_cart(self, client) -> None:
        """Without a cart or amount there is nothing to charge."""
        response = client.post(
            "/api/create-payment-intent", json={"firstName": "Jane", "lastName": "Doe"}
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["message"] == "Cart is empty"

    def test_gateway_error(self, client, harness, seed, session_id, tb) -> None:
        """Gateway failures map to 500 with the gateway message."""
        seed(harness, session_id, (tb, 1, None))
        harness.gateway.error = GatewayError("Your card was declined.", gateway_code="card_declined")

        response = client.post(
            "/api/create-payment-intent", json={"firstName": "Jane", "lastName": "Doe"}
        )

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        data = response.json()
        assert data["error_code"] == "PAYMENT_GATEWAY_ERROR"
        assert data["message"] == "Your card was declined."
        assert data["details"]["gateway_code"] == "card_declined"


class TestConfirmPayment:
    """Tests for POST /api/confirm-payment."""

    def test_missing_intent_id(self, client) -> None:
        """The intent id is required."""
        response = client.post("/api/confirm-payment", json={})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["details"]["missing_fields"] == ["paymentIntentId"]

    def test_reports_status(self, client, harness, seed, session_id, tb) -> None:
        """success mirrors whether the intent succeeded."""
        seed(harness, session_id, (tb, 1, None))
        intent_id = client.post(
            "/api/create-payment-intent", json={"firstName": "Jane", "lastName": "Doe"}
        ).json()["paymentIntentId"]

        pending = client.post("/api/confirm-payment", json={"paymentIntentId": intent_id}).json()
        harness.gateway.succeed(intent_id)
        paid = client.post("/api/confirm-payment", json={"paymentIntentId": intent_id}).json()

        assert pending["success"] is False
        assert pending["paymentIntent"]["status"] == "requires_payment_method"
        assert paid["success"] is True
        assert paid["paymentIntent"] == {"id": intent_id, "status": "succeeded", "amount": 7500}
        assert harness.database_sink.records == []

    def test_unknown_intent(self, client) -> None:
        """Unknown intents surface the gateway error."""
        response = client.post("/api/confirm-payment", json={"paymentIntentId": "pi_unknown"})

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["error_code"] == "PAYMENT_GATEWAY_ERROR"


class TestRecordPaymentSuccess:
    """Tests for POST /api/record-payment-success."""

    def test_unpaid_intent_is_not_recorded(self, client, harness, seed, session_id, tb) -> None:
        """An unpaid intent is reported without recording an order."""
        seed(harness, session_id, (tb, 1, None))
        intent_id = client.post(
            "/api/create-payment-intent", json={"firstName": "Jane", "lastName": "Doe"}
        ).json()["paymentIntentId"]

        response = client.post("/api/record-payment-success", json={"paymentIntentId": intent_id})

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["success"] is False
        assert "requires_payment_method" in data["message"]
        assert harness.database_sink.records == []

    def test_paid_intent_is_recorded_once(self, client, harness, seed, session_id, bpc, tb) -> None:
        """Repeated success calls return the same order."""
        seed(harness, session_id, (bpc, 2, "10mg"), (tb, 1, None))
        intent_id = client.post(
            "/api/create-payment-intent", json={"firstName": "Jane", "lastName": "Doe"}
        ).json()["paymentIntentId"]
        harness.gateway.succeed(intent_id)

        first = client.post("/api/record-payment-success", json={"paymentIntentId": intent_id}).json()
        second = client.post("/api/record-payment-success", json={"paymentIntentId": intent_id}).json()

        assert first["success"] is True
        assert first["recordCount"] == 2
        assert first["duplicate"] is False
        assert second["duplicate"] is True
        assert second["orderId"] == first["orderId"]
        assert len(harness.database_sink.records) == 2
        assert client.get("/api/cart").json()["items"] == []

    def test_missing_intent_id(self, client) -> None:
        """Blank ids are rejected."""
        response = client.post("/api/record-payment-success", json={"paymentIntentId": "  "})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
