"""Tests for operator endpoints and admin API key authentication."""

import asyncio

from fastapi import status

from storefront.domain.entities import PaymentIntent
from storefront.infrastructure.config import settings


def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {settings.admin_api_key}"}


def materialize(harness, intent_id: str = "pi_admin_1"):
    intent = PaymentIntent(
        id=intent_id,
        amount=7500,
        status="succeeded",
        metadata={"session_id": "sess-admin", "customer_name": "Jane Doe"},
    )
    return asyncio.run(harness.materializer.materialize_payment(intent))


# ============================================================================
# Authentication
# ============================================================================


class TestAdminAuthentication:
    """Tests for the admin API key middleware."""

    def test_missing_header(self, client) -> None:
        """Requests without a key are rejected."""
        response = client.post("/api/admin/reconcile")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error_code"] == "UNAUTHORIZED"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_wrong_scheme(self, client) -> None:
        """Only the Bearer scheme is accepted."""
        response = client.post(
            "/api/admin/reconcile",
            headers={"Authorization": f"Basic {settings.admin_api_key}"},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error_code"] == "UNAUTHORIZED"

    def test_wrong_key(self, client) -> None:
        """A wrong key is rejected."""
        response = client.post(
            "/api/admin/reconcile", headers={"Authorization": "Bearer not-the-key"}
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error_code"] == "INVALID_API_KEY"

    def test_storefront_paths_stay_public(self, client) -> None:
        """Session endpoints need no key."""
        response = client.get("/api/cart")

        assert response.status_code == status.HTTP_200_OK


# ============================================================================
# Materialization Status
# ============================================================================


class TestMaterializationStatus:
    """Tests for GET /api/admin/materializations/{payment_reference}."""

    def test_unknown_reference(self, client) -> None:
        """Unknown references are 404."""
        response = client.get("/api/admin/materializations/pi_unknown", headers=auth_headers())

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["error_code"] == "MATERIALIZATION_NOT_FOUND"

    def test_reports_sink_state(self, client, harness) -> None:
        """Each sink reports written lines and completeness."""
        result = materialize(harness)

        response = client.get("/api/admin/materializations/pi_admin_1", headers=auth_headers())

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["payment_reference"] == "pi_admin_1"
        assert data["order_id"] == result.order_id
        assert data["record_count"] == 1
        assert data["sinks"]["database"] == {"written": 1, "complete": True, "last_error": None}
        assert data["sinks"]["airtable"]["complete"] is True


# ============================================================================
# Reconcile
# ============================================================================


class TestReconcile:
    """Tests for POST /api/admin/reconcile."""

    def test_nothing_to_drain(self, client) -> None:
        """An empty outbox drains nothing."""
        response = client.post("/api/admin/reconcile", headers=auth_headers())

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"drained": 0}

    def test_drains_failed_sink(self, client, harness, flaky_sink) -> None:
        """A sink that failed every retry is completed by reconcile."""
        airtable = flaky_sink("airtable", failures=3)
        harness.materializer.sinks[1] = airtable
        materialize(harness, "pi_admin_2")

        before = client.get("/api/admin/materializations/pi_admin_2", headers=auth_headers()).json()
        response = client.post("/api/admin/reconcile", headers=auth_headers())
        after = client.get("/api/admin/materializations/pi_admin_2", headers=auth_headers()).json()

        assert before["sinks"]["airtable"]["complete"] is False
        assert before["sinks"]["airtable"]["last_error"]
        assert response.json() == {"drained": 1}
        assert after["sinks"]["airtable"]["complete"] is True
        assert len(airtable.records) == 1
        assert len(harness.database_sink.records) == 1
