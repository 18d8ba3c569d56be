from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import Mock

import pytest
from dependency_injector import providers
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from dancecoin.core.exceptions import LedgerIndeterminateError, LedgerInvariantViolation
from dancecoin.core.security import create_access_token
from dancecoin.main import create_app
from dancecoin.models.ledger import LedgerEntryType
from dancecoin.schemas.coins import (
    ChargeKind,
    CoinErrorCode,
    CoinOperationResult,
    LedgerEntryResponse,
    LedgerPageResponse,
    PriceQuoteResponse,
    PurchaseState,
    WalletOverviewResponse,
    WalletResponse,
)
from dancecoin.services.coin_ledger_service import CoinLedgerService
from dancecoin.services.pricing import InvalidPriceError

NOW = datetime(2024, 3, 10, 9, 0, tzinfo=timezone.utc)


def wallet(balance=10, account_id="user-1"):
    return WalletResponse(
        account_id=account_id, balance=balance, total_earned=balance, total_spent=0
    )


def entry(amount, balance_after, entry_type=LedgerEntryType.DAILY_BONUS, entry_id=1):
    return LedgerEntryResponse(
        id=entry_id,
        account_id="user-1",
        entry_type=entry_type,
        amount=amount,
        balance_after=balance_after,
        created_at=NOW,
    )


@pytest.fixture
def app():
    return create_app()


@pytest.fixture
def coin_service(app):
    """CoinLedgerService 모의 객체로 교체"""
    service = Mock(spec=CoinLedgerService)
    app.container.services.coin_ledger_service.override(providers.Object(service))
    yield service
    app.container.services.coin_ledger_service.reset_override()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def user_headers():
    return {"Authorization": f"Bearer {create_access_token('user-1')}"}


class TestAuthentication:
    def test_missing_token(self, client, coin_service):
        response = client.get("/api/v1/coins/wallet")
        assert response.status_code == 401
        coin_service.wallet_overview.assert_not_called()

    def test_invalid_token(self, client, coin_service):
        response = client.get(
            "/api/v1/coins/wallet", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401

    def test_expired_token(self, client, coin_service):
        token = create_access_token("user-1", expires_delta=timedelta(minutes=-1))
        response = client.get(
            "/api/v1/coins/wallet", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401


class TestCoinRoutes:
    """사용자 코인 라우터 테스트"""

    def test_get_my_wallet(self, client, coin_service, user_headers):
        # Given
        coin_service.wallet_overview.return_value = WalletOverviewResponse(
            wallet=wallet(10),
            recent_entries=[entry(1, 10)],
            can_claim_daily_bonus=False,
            balance_eur=Decimal("5.00"),
        )

        # When
        response = client.get("/api/v1/coins/wallet", headers=user_headers)

        # Then
        assert response.status_code == 200
        data = response.json()
        assert data["wallet"]["balance"] == 10
        assert data["recent_entries"][0]["entry_type"] == "daily_bonus"
        coin_service.wallet_overview.assert_called_once_with("user-1")

    def test_get_my_ledger_passes_cursor(self, client, coin_service, user_headers):
        coin_service.ledger_page.return_value = LedgerPageResponse(
            account_id="user-1", entries=[], has_next=False
        )

        response = client.get(
            "/api/v1/coins/ledger",
            params={"limit": 20, "before": NOW.isoformat(), "before_id": 7},
            headers=user_headers,
        )

        assert response.status_code == 200
        kwargs = coin_service.ledger_page.call_args.kwargs
        assert kwargs["limit"] == 20
        assert kwargs["before_id"] == 7
        assert kwargs["before"] == NOW

    def test_ledger_limit_is_bounded(self, client, coin_service, user_headers):
        response = client.get("/api/v1/coins/ledger?limit=500", headers=user_headers)
        assert response.status_code == 422

    def test_claim_daily_bonus(self, client, coin_service, user_headers):
        coin_service.credit_daily_bonus.return_value = CoinOperationResult(
            success=True, wallet=wallet(1), entries=[entry(1, 1)]
        )

        response = client.post("/api/v1/coins/daily-bonus", headers=user_headers)

        assert response.status_code == 200
        assert response.json()["entries"][0]["amount"] == 1

    def test_daily_bonus_already_claimed(self, client, coin_service, user_headers):
        coin_service.credit_daily_bonus.return_value = CoinOperationResult.failure(
            CoinErrorCode.ALREADY_CLAIMED_TODAY, "Daily bonus already claimed today", wallet(1)
        )

        response = client.post("/api/v1/coins/daily-bonus", headers=user_headers)

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "ALREADY_CLAIMED_TODAY"
        assert error["details"]["balance"] == 1

    @pytest.mark.parametrize(
        "error_code, status_code",
        [
            (CoinErrorCode.KEY_NOT_FOUND, 404),
            (CoinErrorCode.KEY_EXPIRED, 400),
            (CoinErrorCode.KEY_EXHAUSTED, 400),
            (CoinErrorCode.KEY_ALREADY_REDEEMED, 409),
        ],
    )
    def test_redeem_failures(self, client, coin_service, user_headers, error_code, status_code):
        coin_service.redeem_key.return_value = CoinOperationResult.failure(error_code, "nope")

        response = client.post(
            "/api/v1/coins/redeem", json={"code": "DANCE-AB12-CD34"}, headers=user_headers
        )

        assert response.status_code == status_code
        assert response.json()["error"]["code"] == error_code.value
        coin_service.redeem_key.assert_called_once_with("user-1", "DANCE-AB12-CD34")

    def test_unlock_course(self, client, coin_service, user_headers):
        coin_service.unlock_course.return_value = CoinOperationResult(
            success=True,
            wallet=wallet(80),
            entries=[entry(-20, 80, LedgerEntryType.COURSE_UNLOCK)],
            purchase_state=PurchaseState.COMPLETED,
        )

        response = client.post(
            "/api/v1/coins/courses/course-1/unlock",
            json={"price_eur": "9.99", "idempotency_key": "unlock-1"},
            headers=user_headers,
        )

        assert response.status_code == 200
        assert response.json()["purchase_state"] == "COMPLETED"
        coin_service.unlock_course.assert_called_once_with(
            "user-1", "course-1", Decimal("9.99"), "unlock-1"
        )

    def test_unlock_insufficient_balance(self, client, coin_service, user_headers):
        coin_service.unlock_course.return_value = CoinOperationResult.failure(
            CoinErrorCode.INSUFFICIENT_BALANCE,
            "Not enough coins. Required: 20, available: 3",
            wallet=wallet(3),
            purchase_state=PurchaseState.INITIATED,
        )

        response = client.post(
            "/api/v1/coins/courses/course-1/unlock",
            json={"price_eur": "9.99", "idempotency_key": "unlock-1"},
            headers=user_headers,
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "INSUFFICIENT_BALANCE"
        assert error["details"] == {"balance": 3, "purchase_state": "INITIATED"}

    def test_create_charge(self, client, coin_service, user_headers):
        coin_service.charge.return_value = CoinOperationResult(
            success=True,
            wallet=wallet(7),
            entries=[entry(-3, 7, LedgerEntryType.BOOKING_CHARGE)],
        )

        response = client.post(
            "/api/v1/coins/charges",
            json={
                "kind": "booking",
                "reference_id": "booking-1",
                "coin_cost": 3,
                "idempotency_key": "req-1",
            },
            headers=user_headers,
        )

        assert response.status_code == 200
        coin_service.charge.assert_called_once_with(
            "user-1", ChargeKind.BOOKING, "booking-1", 3, "req-1"
        )

    def test_charge_requires_positive_cost(self, client, coin_service, user_headers):
        response = client.post(
            "/api/v1/coins/charges",
            json={"kind": "booking", "reference_id": "b", "coin_cost": 0, "idempotency_key": "k"},
            headers=user_headers,
        )
        assert response.status_code == 422
        coin_service.charge.assert_not_called()

    def test_packages_and_quote_are_public(self, client, coin_service):
        coin_service.list_packages.return_value = []
        coin_service.quote.return_value = PriceQuoteResponse(
            price_eur=Decimal("20.00"), coins_required=40, cashback_coins=2
        )

        assert client.get("/api/v1/coins/packages").status_code == 200
        response = client.get("/api/v1/coins/quote", params={"price_eur": "20.00"})

        assert response.status_code == 200
        assert response.json()["coins_required"] == 40

    def test_quote_with_sub_cent_price(self, client, coin_service):
        coin_service.quote.side_effect = InvalidPriceError("Price has more than 2 decimal places: 1.005")

        response = client.get("/api/v1/coins/quote", params={"price_eur": "1.005"})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_001"


class TestStoreFailureResponses:
    def test_indeterminate_outcome(self, client, coin_service, user_headers):
        coin_service.charge.side_effect = LedgerIndeterminateError("charge_booking commit outcome unknown", "req-1")

        response = client.post(
            "/api/v1/coins/charges",
            json={"kind": "booking", "reference_id": "b", "coin_cost": 1, "idempotency_key": "req-1"},
            headers=user_headers,
        )

        assert response.status_code == 503
        error = response.json()["error"]
        assert error["code"] == "OUTCOME_UNKNOWN"
        assert error["details"]["idempotency_key"] == "req-1"

    def test_invariant_violation_is_hidden(self, client, coin_service, user_headers):
        coin_service.credit_daily_bonus.side_effect = LedgerInvariantViolation(
            "Wallet cache balance 999 differs from ledger balance 10", "user-1"
        )

        response = client.post("/api/v1/coins/daily-bonus", headers=user_headers)

        assert response.status_code == 500
        assert "999" not in response.text


class TestHealth:
    def test_healthy(self, app, session_factory):
        app.container.database.session_factory.override(providers.Object(session_factory))
        try:
            response = TestClient(app).get("/health")
        finally:
            app.container.database.session_factory.reset_override()

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["ledger_store"] == "ok"
        assert response.headers["X-Request-ID"]

    def test_store_unreachable(self, app):
        broken = Mock()
        broken.return_value.execute.side_effect = OperationalError(
            "SELECT 1", None, Exception("connection refused")
        )
        app.container.database.session_factory.override(providers.Object(broken))
        try:
            response = TestClient(app).get("/health")
        finally:
            app.container.database.session_factory.reset_override()

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"
        assert response.json()["ledger_store"] == "unavailable"
