from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from dancecoin.core.exceptions import (
    LedgerIndeterminateError,
    LedgerInvariantViolation,
    LedgerStoreError,
)
from dancecoin.models.ledger import LedgerEntryType
from dancecoin.models.wallet import CoinWallet
from dancecoin.repositories.ledger_repository import LedgerRepository
from dancecoin.schemas.coins import ChargeKind, CoinErrorCode, PurchaseState


@pytest.fixture
def events(publisher):
    received = []
    publisher.subscribe(received.append)
    return received


def fund(coin_service, account_id, amount):
    result = coin_service.admin_adjust(account_id, amount, "admin-1", "test funds")
    assert result.success
    return result


class TestIdempotency:
    """같은 멱등성 키로 재시도하면 한 번만 적용"""

    def test_charge_replay_returns_original_entry(self, coin_service):
        fund(coin_service, "user-1", 10)

        first = coin_service.charge_booking("user-1", "booking-1", 4, "req-1")
        second = coin_service.charge_booking("user-1", "booking-1", 4, "req-1")

        assert first.success and not first.replayed
        assert second.success and second.replayed
        assert second.entries[0].id == first.entries[0].id
        assert coin_service.get_wallet("user-1").balance == 6

    def test_replay_wins_over_insufficient_balance(self, coin_service):
        """잔액을 다 쓴 뒤의 재시도도 실패가 아니라 재실행 응답"""
        fund(coin_service, "user-1", 4)
        coin_service.charge_video_review("user-1", "submission-1", 4, "req-1")

        retried = coin_service.charge_video_review("user-1", "submission-1", 4, "req-1")

        assert retried.success
        assert retried.replayed
        assert retried.wallet.balance == 0

    def test_key_reused_for_other_account_conflicts(self, coin_service):
        fund(coin_service, "user-1", 10)
        fund(coin_service, "user-2", 10)
        coin_service.charge_booking("user-1", "booking-1", 4, "shared-key")

        result = coin_service.charge_booking("user-2", "booking-2", 4, "shared-key")

        assert not result.success
        assert result.error_code == CoinErrorCode.IDEMPOTENCY_CONFLICT
        assert coin_service.get_wallet("user-2").balance == 10

    def test_key_reused_for_other_entry_type_conflicts(self, coin_service):
        fund(coin_service, "user-1", 10)
        coin_service.charge_booking("user-1", "booking-1", 4, "req-1")

        result = coin_service.charge_training_plan("user-1", "plan-1", 4, "req-1")

        assert result.error_code == CoinErrorCode.IDEMPOTENCY_CONFLICT

    def test_key_reused_for_other_booking_conflicts(self, coin_service):
        fund(coin_service, "user-1", 20)
        coin_service.charge_booking("user-1", "booking-1", 4, "req-1")

        result = coin_service.charge_booking("user-1", "booking-2", 10, "req-1")

        assert not result.success
        assert result.error_code == CoinErrorCode.IDEMPOTENCY_CONFLICT
        assert result.wallet.balance == 16

    def test_key_reused_with_other_amount_conflicts(self, coin_service):
        fund(coin_service, "user-1", 20)
        coin_service.charge_video_review("user-1", "submission-1", 4, "req-1")

        result = coin_service.charge_video_review("user-1", "submission-1", 5, "req-1")

        assert result.error_code == CoinErrorCode.IDEMPOTENCY_CONFLICT
        assert coin_service.get_wallet("user-1").balance == 16

    def test_reward_key_reused_with_other_amount_conflicts(self, coin_service):
        coin_service.credit_reward("user-1", LedgerEntryType.REFERRAL, 5, "referral-1")

        result = coin_service.credit_reward("user-1", LedgerEntryType.REFERRAL, 50, "referral-1")

        assert result.error_code == CoinErrorCode.IDEMPOTENCY_CONFLICT
        assert coin_service.get_wallet("user-1").balance == 5

    def test_store_transaction_reused_for_other_package_conflicts(self, coin_service):
        coin_service.credit_package_purchase("user-1", "coins_10", "store-tx-1")

        result = coin_service.credit_package_purchase("user-1", "coins_24", "store-tx-1")

        assert result.error_code == CoinErrorCode.IDEMPOTENCY_CONFLICT

    def test_refund_key_reused_for_other_charge_conflicts(self, coin_service):
        fund(coin_service, "user-1", 10)
        first = coin_service.charge_booking("user-1", "booking-1", 4, "req-1")
        second = coin_service.charge_booking("user-1", "booking-2", 3, "req-2")

        coin_service.refund("user-1", first.entries[0].id, "cancelled", idempotency_key="refund-req")
        reused = coin_service.refund("user-1", second.entries[0].id, "cancelled", idempotency_key="refund-req")

        assert reused.error_code == CoinErrorCode.IDEMPOTENCY_CONFLICT
        assert coin_service.get_wallet("user-1").balance == 7

        refunded = coin_service.refund("user-1", second.entries[0].id, "cancelled")
        assert refunded.success and not refunded.replayed
        assert refunded.wallet.balance == 10

    def test_charge_dispatches_by_kind(self, coin_service):
        fund(coin_service, "user-1", 10)

        result = coin_service.charge("user-1", ChargeKind.TRAINING_PLAN, "plan-7", 3, "req-plan")

        assert result.entries[0].entry_type == LedgerEntryType.PLAN_CHARGE
        assert result.entries[0].reference_id == "plan-7"

    def test_insufficient_balance_writes_nothing(self, coin_service, events):
        fund(coin_service, "user-1", 3)
        events.clear()

        result = coin_service.charge_booking("user-1", "booking-1", 4, "req-1")

        assert not result.success
        assert result.error_code == CoinErrorCode.INSUFFICIENT_BALANCE
        assert result.wallet.balance == 3
        assert coin_service.ledger_page("user-1").entries[0].entry_type == LedgerEntryType.ADMIN_GRANT
        assert events == []


class TestEarn:
    def test_daily_bonus_once_per_local_day(self, coin_service, clock):
        assert coin_service.credit_daily_bonus("user-1").success
        again = coin_service.credit_daily_bonus("user-1")
        assert again.error_code == CoinErrorCode.ALREADY_CLAIMED_TODAY

        clock.advance(days=1)
        assert coin_service.credit_daily_bonus("user-1").success
        assert coin_service.get_wallet("user-1").balance == 2

    def test_package_purchase_is_credited_once(self, coin_service):
        first = coin_service.credit_package_purchase("user-1", "coins_24", "store-tx-1")
        second = coin_service.credit_package_purchase("user-1", "coins_24", "store-tx-1")

        assert first.entries[0].amount == 26
        assert first.entries[0].reference_id == "store-tx-1"
        assert second.replayed
        assert coin_service.get_wallet("user-1").balance == 26

    def test_store_transaction_for_other_account_conflicts(self, coin_service):
        coin_service.credit_package_purchase("user-1", "coins_10", "store-tx-1")
        result = coin_service.credit_package_purchase("user-2", "coins_10", "store-tx-1")
        assert result.error_code == CoinErrorCode.IDEMPOTENCY_CONFLICT

    def test_unknown_package(self, coin_service):
        result = coin_service.credit_package_purchase("user-1", "coins_9999", "store-tx-1")
        assert result.error_code == CoinErrorCode.UNKNOWN_PACKAGE

    def test_reward_types(self, coin_service):
        promo = coin_service.credit_reward("user-1", LedgerEntryType.PROMOTION, 5, "promo-1", "spring")
        assert promo.success
        assert promo.entries[0].note == "spring"

        invalid = coin_service.credit_reward("user-1", LedgerEntryType.COURSE_UNLOCK, 5, "promo-2")
        assert invalid.error_code == CoinErrorCode.INVALID_AMOUNT
        assert coin_service.get_wallet("user-1").balance == 5


class TestCourseSale:
    def test_unlock_rounds_coins_up(self, coin_service):
        fund(coin_service, "user-1", 100)

        result = coin_service.unlock_course("user-1", "course-1", Decimal("9.99"), "unlock-1")

        # 9.99 EUR → 20 코인, 캐시백 floor(0.4995) = 0
        assert result.success
        assert [e.amount for e in result.entries] == [-20]
        assert result.wallet.balance == 80

    def test_unlock_with_cashback(self, coin_service):
        fund(coin_service, "user-1", 100)

        result = coin_service.unlock_course("user-1", "course-1", Decimal("20.00"), "unlock-1")

        assert [e.amount for e in result.entries] == [-40, 2]
        assert result.wallet.balance == 62
        assert result.wallet.total_spent == 40

    @pytest.mark.parametrize(
        "price", [Decimal("0"), Decimal("1.005"), Decimal("-1"), Decimal("1e400")]
    )
    def test_unlock_rejects_free_or_invalid_price(self, coin_service, price):
        result = coin_service.unlock_course("user-1", "course-1", price, "unlock-1")
        assert result.error_code == CoinErrorCode.INVALID_AMOUNT
        assert result.purchase_state == PurchaseState.INITIATED

    def test_failed_sale_touches_no_account(self, coin_service):
        fund(coin_service, "user-1", 10)
        coin_service.set_commission("course-1", "trainer-a", 50, "admin-1")

        result = coin_service.record_sale_and_payout("course-1", "user-1", 20, "sale-1")

        assert result.error_code == CoinErrorCode.INSUFFICIENT_BALANCE
        assert result.purchase_state == PurchaseState.INITIATED
        assert coin_service.get_wallet("trainer-a").balance == 0
        assert coin_service.recompute("user-1") == 10

    def test_sale_replay(self, coin_service, events):
        fund(coin_service, "buyer-1", 200)
        coin_service.set_commission("course-1", "trainer-a", 40, "admin-1")
        first = coin_service.record_sale_and_payout("course-1", "buyer-1", 100, "sale-1")
        published = len(events)

        second = coin_service.record_sale_and_payout("course-1", "buyer-1", 100, "sale-1")

        assert second.replayed
        assert second.purchase_state == PurchaseState.COMPLETED
        assert {e.id for e in second.entries} == {e.id for e in first.entries}
        assert [(p.trainer_id, p.payout_amount) for p in second.payouts] == [("trainer-a", 40)]
        assert coin_service.get_wallet("trainer-a").balance == 40
        assert coin_service.get_wallet("buyer-1").balance == 105
        assert len(events) == published

    def test_sale_key_used_by_other_buyer_conflicts(self, coin_service):
        fund(coin_service, "buyer-1", 200)
        fund(coin_service, "buyer-2", 200)
        coin_service.record_sale_and_payout("course-1", "buyer-1", 10, "sale-1")

        result = coin_service.record_sale_and_payout("course-1", "buyer-2", 10, "sale-1")

        assert result.error_code == CoinErrorCode.IDEMPOTENCY_CONFLICT
        assert coin_service.get_wallet("buyer-2").balance == 200


    def test_sale_key_replayed_with_other_amount_conflicts(self, coin_service):
        fund(coin_service, "buyer-1", 200)
        coin_service.record_sale_and_payout("course-1", "buyer-1", 10, "sale-1")

        result = coin_service.record_sale_and_payout("course-1", "buyer-1", 30, "sale-1")

        assert result.error_code == CoinErrorCode.IDEMPOTENCY_CONFLICT
        assert result.purchase_state == PurchaseState.INITIATED
        assert result.wallet.balance == 190

    def test_sale_key_sharing_a_prefix_with_earlier_key_is_applied(self, coin_service):
        fund(coin_service, "buyer-1", 200)
        coin_service.set_commission("course-1", "trainer-a", 40, "admin-1")
        assert coin_service.record_sale_and_payout("course-1", "buyer-1", 100, "order-1:2").success

        result = coin_service.record_sale_and_payout("course-2", "buyer-1", 10, "order-1")

        assert result.success
        assert not result.replayed
        assert [e.reference_id for e in result.entries] == ["course-2"]
        assert coin_service.get_wallet("buyer-1").balance == 95

class TestCorrections:
    def test_refund_creates_compensating_entry(self, coin_service):
        fund(coin_service, "user-1", 10)
        charge = coin_service.charge_booking("user-1", "booking-1", 4, "req-1")
        charge_entry = charge.entries[0]

        refund = coin_service.refund("user-1", charge_entry.id, "class cancelled")

        entry = refund.entries[0]
        assert entry.entry_type == LedgerEntryType.BOOKING_REFUND
        assert entry.amount == 4
        assert entry.reference_id == str(charge_entry.id)
        assert refund.wallet.balance == 10
        # 원래 항목은 그대로
        page = coin_service.ledger_page("user-1")
        assert charge_entry in page.entries

    def test_course_unlock_maps_to_refund(self, coin_service):
        fund(coin_service, "user-1", 10)
        charge = coin_service.charge_course_unlock("user-1", "course-1", 6, "req-1")

        refund = coin_service.refund("user-1", charge.entries[0].id, "support")

        assert refund.entries[0].entry_type == LedgerEntryType.REFUND

    def test_each_charge_is_refunded_once(self, coin_service):
        fund(coin_service, "user-1", 10)
        charge = coin_service.charge_booking("user-1", "booking-1", 4, "req-1")
        entry_id = charge.entries[0].id

        coin_service.refund("user-1", entry_id, "cancelled")
        retried = coin_service.refund("user-1", entry_id, "cancelled")
        other_key = coin_service.refund("user-1", entry_id, "cancelled", idempotency_key="refund-again")

        assert retried.replayed
        assert other_key.error_code == CoinErrorCode.NOT_REFUNDABLE
        assert coin_service.get_wallet("user-1").balance == 10

    def test_credit_entries_are_not_refundable(self, coin_service):
        grant = fund(coin_service, "user-1", 10)
        result = coin_service.refund("user-1", grant.entries[0].id, "oops")
        assert result.error_code == CoinErrorCode.NOT_REFUNDABLE

    def test_refund_of_unknown_or_foreign_entry(self, coin_service):
        fund(coin_service, "user-1", 10)
        charge = coin_service.charge_booking("user-1", "booking-1", 4, "req-1")

        assert coin_service.refund("user-1", 9999, "x").error_code == CoinErrorCode.ENTRY_NOT_FOUND
        foreign = coin_service.refund("user-2", charge.entries[0].id, "x")
        assert foreign.error_code == CoinErrorCode.ENTRY_NOT_FOUND

    def test_admin_remove_cannot_exceed_balance(self, coin_service):
        fund(coin_service, "user-1", 5)

        removed = coin_service.admin_adjust("user-1", -3, "admin-1", "abuse")
        too_much = coin_service.admin_adjust("user-1", -3, "admin-1", "abuse")

        assert removed.entries[0].entry_type == LedgerEntryType.ADMIN_REMOVE
        assert too_much.error_code == CoinErrorCode.INSUFFICIENT_BALANCE
        assert coin_service.get_wallet("user-1").balance == 2

    def test_zero_adjustment_is_invalid(self, coin_service):
        result = coin_service.admin_adjust("user-1", 0, "admin-1", "noop")
        assert result.error_code == CoinErrorCode.INVALID_AMOUNT

    def test_set_balance_records_difference(self, coin_service):
        up = coin_service.admin_set_balance("user-1", 30, "admin-1")
        down = coin_service.admin_set_balance("user-1", 10, "admin-1")
        same = coin_service.admin_set_balance("user-1", 10, "admin-1")

        assert [e.amount for e in up.entries] == [30]
        assert [e.amount for e in down.entries] == [-20]
        assert same.success and same.entries == []
        assert coin_service.get_wallet("user-1").balance == 10
        assert coin_service.verify_account_integrity("user-1").entry_count == 2


class TestReads:
    def test_wallet_overview(self, coin_service):
        overview = coin_service.wallet_overview("new-user")
        assert overview.wallet.balance == 0
        assert overview.can_claim_daily_bonus
        assert overview.recent_entries == []

        coin_service.credit_daily_bonus("new-user")
        fund(coin_service, "new-user", 9)

        overview = coin_service.wallet_overview("new-user")
        assert not overview.can_claim_daily_bonus
        assert overview.balance_eur == Decimal("5.00")
        assert [e.amount for e in overview.recent_entries] == [9, 1]

    def test_ledger_pages_cover_every_entry_once(self, coin_service):
        for i in range(5):
            coin_service.credit_reward("user-1", LedgerEntryType.PROMOTION, 1, f"promo-{i}")

        seen = []
        page = coin_service.ledger_page("user-1", limit=2)
        seen.extend(e.id for e in page.entries)
        while page.has_next:
            page = coin_service.ledger_page(
                "user-1", limit=2, before=page.next_before, before_id=page.next_before_id
            )
            seen.extend(e.id for e in page.entries)

        assert len(seen) == 5
        assert seen == sorted(seen, reverse=True)

    def test_quote(self, coin_service):
        quote = coin_service.quote(Decimal("20.00"))
        assert quote.coins_required == 40
        assert quote.cashback_coins == 2
        assert len(coin_service.list_packages()) == 6


class TestIntegrity:
    def test_integrity_ok(self, coin_service):
        fund(coin_service, "user-1", 10)
        coin_service.charge_booking("user-1", "booking-1", 4, "req-1")

        report = coin_service.verify_account_integrity("user-1")

        assert report.status == "OK"
        assert report.wallet_balance == report.recomputed_balance == report.latest_balance_after == 6
        assert coin_service.verify_global_integrity().status == "OK"

    def test_tampered_cache_is_detected_and_blocks_writes(self, coin_service, session_factory):
        fund(coin_service, "user-1", 10)
        with session_factory() as session:
            session.query(CoinWallet).filter(CoinWallet.account_id == "user-1").update(
                {CoinWallet.balance: 999}, synchronize_session=False
            )
            session.commit()

        assert coin_service.verify_account_integrity("user-1").status == "MISMATCH"
        assert coin_service.verify_global_integrity().status == "MISMATCH"

        with pytest.raises(LedgerInvariantViolation):
            coin_service.credit_reward("user-1", LedgerEntryType.PROMOTION, 1, "promo-1")
        assert coin_service.recompute("user-1") == 10


class TestStoreFailures:
    def test_commit_failure_is_indeterminate(self, coin_service):
        fund(coin_service, "user-1", 10)

        with patch.object(
            Session,
            "commit",
            side_effect=OperationalError("COMMIT", None, Exception("disk I/O error")),
        ):
            with pytest.raises(LedgerIndeterminateError) as exc_info:
                coin_service.charge_booking("user-1", "booking-1", 4, "req-1")

        assert exc_info.value.idempotency_key == "req-1"
        # 결과 확인 후 같은 키로 재시도
        assert coin_service.recompute("user-1") == 10
        assert coin_service.charge_booking("user-1", "booking-1", 4, "req-1").success

    def test_failure_before_commit_is_store_error(self, coin_service):
        with patch.object(LedgerRepository, "append", side_effect=SQLAlchemyError("boom")):
            with pytest.raises(LedgerStoreError):
                coin_service.credit_reward("user-1", LedgerEntryType.PROMOTION, 1, "promo-1")

        assert coin_service.get_wallet("user-1").balance == 0


    def test_lock_timeout_before_commit_is_indeterminate(self, coin_service):
        fund(coin_service, "user-1", 10)

        with patch.object(
            LedgerRepository,
            "append",
            side_effect=OperationalError("INSERT", None, Exception("lock timeout")),
        ):
            with pytest.raises(LedgerIndeterminateError) as exc_info:
                coin_service.charge_booking("user-1", "booking-1", 4, "req-1")

        assert exc_info.value.idempotency_key == "req-1"
        assert coin_service.recompute("user-1") == 10
        assert coin_service.get_wallet("user-1").balance == 10

class TestBalanceEvents:
    def test_event_published_after_commit(self, coin_service, events):
        fund(coin_service, "user-1", 10)

        assert len(events) == 1
        assert events[0].account_id == "user-1"
        assert events[0].balance == 10
        assert events[0].delta == 10

    def test_sale_publishes_one_event_per_account(self, coin_service, events):
        fund(coin_service, "buyer-1", 200)
        coin_service.set_commission("course-1", "trainer-a", 40, "admin-1")
        events.clear()

        coin_service.record_sale_and_payout("course-1", "buyer-1", 100, "sale-1")

        by_account = {e.account_id: e for e in events}
        assert set(by_account) == {"buyer-1", "trainer-a"}
        assert by_account["buyer-1"].delta == -95
        assert by_account["buyer-1"].balance == 105
        assert by_account["trainer-a"].balance == 40

    def test_no_event_for_replay_or_failure(self, coin_service, events):
        coin_service.credit_package_purchase("user-1", "coins_10", "store-tx-1")
        coin_service.credit_package_purchase("user-1", "coins_10", "store-tx-1")
        coin_service.charge_booking("user-1", "booking-1", 50, "req-1")

        assert len(events) == 1

    def test_subscriber_errors_do_not_fail_the_operation(self, coin_service, publisher):
        def broken(event):
            raise RuntimeError("listener down")

        unsubscribe = publisher.subscribe(broken)
        assert fund(coin_service, "user-1", 3).success
        unsubscribe()


class TestConcurrency:
    def test_concurrent_debits_never_overdraw(self, file_coin_service):
        fund(file_coin_service, "user-1", 10)

        with ThreadPoolExecutor(max_workers=10) as pool:
            results = list(
                pool.map(
                    lambda i: file_coin_service.charge_booking("user-1", f"booking-{i}", 3, f"req-{i}"),
                    range(10),
                )
            )

        assert sum(r.success for r in results) == 3
        assert all(
            r.error_code == CoinErrorCode.INSUFFICIENT_BALANCE for r in results if not r.success
        )
        assert file_coin_service.get_wallet("user-1").balance == 1
        assert file_coin_service.verify_account_integrity("user-1").status == "OK"

    def test_concurrent_transfers_conserve_total(self, file_coin_service):
        fund(file_coin_service, "buyer-1", 50)
        fund(file_coin_service, "buyer-2", 50)
        file_coin_service.set_commission("course-1", "trainer-a", 50, "admin-1")

        def buy(i):
            buyer = "buyer-1" if i % 2 else "buyer-2"
            return file_coin_service.record_sale_and_payout("course-1", buyer, 10, f"sale-{i}")

        with ThreadPoolExecutor(max_workers=6) as pool:
            results = list(pool.map(buy, range(6)))

        assert all(r.success for r in results)
        report = file_coin_service.verify_global_integrity()
        assert report.status == "OK"
        # 판매 6건 x (-10 + 5 수수료 + 0 캐시백)
        assert report.total_deltas == 100 - 6 * 5
