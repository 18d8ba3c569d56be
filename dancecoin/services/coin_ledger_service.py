"""
Coin Ledger Service - 잔액을 변경하는 모든 작업의 유일한 진입점

이 서비스는 프로세스 전역 싱글톤으로, 작업마다 새 세션을 열고 트랜잭션 경계를 직접 소유합니다.

작업 흐름:
1. 대상 계정 지갑 잠금 (정렬된 순서)
2. 멱등성 키 확인 - 이미 적용된 키면 기존 항목을 그대로 반환 (replayed=True)
3. 검증 → 원장 추가 → 지갑 캐시 갱신
4. 커밋 후에만 잔액 변경 이벤트 발행

예상 가능한 실패(잔액 부족, 코드 만료 등)는 예외가 아니라 CoinOperationResult로 반환합니다.
저장소 장애는 다음과 같이 구분됩니다:
- LedgerInvariantViolation: 원장/지갑 불일치 (작업 실패, 자동 보정 없음)
- LedgerIndeterminateError: 타임아웃 또는 커밋 중 실패 (결과 불명 - recompute로 확인 후 같은 키로만 재시도)
- LedgerStoreError: 커밋 전 실패 (롤백됨)
"""

from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Iterable, Iterator, List, Optional, Set, Union
import logging
import uuid

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from dancecoin.config import Settings
from dancecoin.core.exceptions import (
    CoinOperationFailed,
    LedgerIndeterminateError,
    LedgerInvariantViolation,
    LedgerStoreError,
)
from dancecoin.database.session import session_scope
from dancecoin.logging_config import AUDIT_LOGGER
from dancecoin.models.base import utcnow
from dancecoin.models.ledger import REFUND_TYPES, CoinLedgerEntry, LedgerEntryType
from dancecoin.schemas.coins import (
    ChargeKind,
    CoinErrorCode,
    CoinOperationResult,
    GlobalIntegrityResponse,
    IntegrityCheckResponse,
    LedgerEntryResponse,
    LedgerPageResponse,
    PayoutLine,
    PriceQuoteResponse,
    PurchaseState,
    WalletOverviewResponse,
    WalletResponse,
)
from dancecoin.schemas.commission import (
    CommissionSaveResponse,
    CourseCommissionSummary,
    EarningsPeriod,
    TrainerEarningsResponse,
)
from dancecoin.schemas.redemption import (
    KeyRedemptionRecordResponse,
    RedemptionKeyCreateResponse,
    RedemptionKeyListResponse,
)
from dancecoin.services import pricing
from dancecoin.services.balance_events import BalanceEventPublisher, events_from_entries
from dancecoin.services.commission_service import CommissionService
from dancecoin.services.redemption_key_service import RedemptionKeyService
from dancecoin.services.wallet_service import WalletService

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger(AUDIT_LOGGER)

REWARD_TYPES = {LedgerEntryType.PROMOTION, LedgerEntryType.REFERRAL}


class LedgerTransaction:
    """하나의 DB 트랜잭션에 묶인 도메인 서비스 묶음"""

    def __init__(self, db: Session, settings: Settings):
        self.db = db
        self.wallets = WalletService(db, settings)
        self.ledger = self.wallets.ledger_repo
        self.keys = RedemptionKeyService(db, self.wallets)
        self.commissions = CommissionService(db, settings, self.wallets)
        # 재실행(replay) 응답처럼 쓰기가 없어야 하는 경우 커밋 대신 롤백
        self.rollback_only = False


AccountsArg = Union[Iterable[str], Callable[[LedgerTransaction], Iterable[str]]]


class CoinLedgerService:
    def __init__(
        self,
        session_factory: sessionmaker,
        settings: Settings,
        publisher: Optional[BalanceEventPublisher] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.publisher = publisher or BalanceEventPublisher()
        self.clock = clock or utcnow

    def _now(self) -> datetime:
        return self.clock()

    # ------------------------------------------------------------------
    # Transaction plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(
        self, operation: str, idempotency_key: Optional[str] = None
    ) -> Iterator[LedgerTransaction]:
        db = self.session_factory()
        tx = LedgerTransaction(db, self.settings)
        try:
            try:
                yield tx
            except IntegrityError:
                db.rollback()
                raise
            except OperationalError as e:
                # 잠금 대기/문 타임아웃, 연결 끊김
                db.rollback()
                logger.error(f"{operation} timed out or lost the store: {str(e)}")
                raise LedgerIndeterminateError(
                    f"{operation} did not complete in time", idempotency_key
                ) from e
            except LedgerInvariantViolation as e:
                db.rollback()
                audit_logger.error(
                    f"Invariant violation during {operation} for account {e.account_id}: {e.detail}"
                )
                raise
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"{operation} failed before commit: {str(e)}")
                raise LedgerStoreError(f"{operation} failed: {str(e)}") from e
            except Exception:
                db.rollback()
                raise

            if tx.rollback_only:
                db.rollback()
                return

            try:
                db.commit()
            except SQLAlchemyError as e:
                logger.error(
                    f"{operation} commit outcome unknown (idempotency key {idempotency_key}): {str(e)}"
                )
                raise LedgerIndeterminateError(
                    f"{operation} commit outcome unknown", idempotency_key
                ) from e
        finally:
            db.close()

    def _run(
        self,
        operation: str,
        work: Callable[[LedgerTransaction], object],
        accounts: AccountsArg = (),
        replay: Optional[Callable[[LedgerTransaction], Optional[CoinOperationResult]]] = None,
        idempotency_key: Optional[str] = None,
    ):
        """
        트랜잭션 실행 (IntegrityError 시 1회 재시도)

        IntegrityError는 동시 요청이 같은 멱등성 키 또는 같은 신규 지갑을 먼저 커밋한 경우입니다.
        재시도하면 멱등성 확인 단계에서 기존 항목을 찾아 재실행 응답을 돌려줍니다.
        """
        for attempt in (1, 2):
            try:
                with self._transaction(operation, idempotency_key) as tx:
                    account_ids = accounts(tx) if callable(accounts) else accounts
                    tx.wallets.lock_accounts(account_ids)

                    if replay is not None:
                        replayed = replay(tx)
                        if replayed is not None:
                            tx.rollback_only = True
                            return replayed

                    return work(tx)
            except IntegrityError as e:
                if attempt == 1:
                    logger.info(f"{operation}: concurrent write detected, retrying once")
                    continue
                raise LedgerStoreError(
                    f"{operation}: write conflict persisted after retry"
                ) from e

    def _execute(
        self,
        operation: str,
        work: Callable[[LedgerTransaction], CoinOperationResult],
        account_id: str,
        accounts: Optional[AccountsArg] = None,
        replay: Optional[Callable[[LedgerTransaction], Optional[CoinOperationResult]]] = None,
        idempotency_key: Optional[str] = None,
        failure_state: Optional[PurchaseState] = None,
    ) -> CoinOperationResult:
        try:
            result = self._run(
                operation,
                work,
                accounts=accounts if accounts is not None else [account_id],
                replay=replay,
                idempotency_key=idempotency_key,
            )
        except CoinOperationFailed as e:
            logger.info(f"{operation} for {account_id} failed: {e.error_code.value}")
            return CoinOperationResult.failure(
                e.error_code,
                e.message,
                wallet=self.get_wallet(account_id),
                purchase_state=failure_state,
            )

        self._publish(result)
        return result

    def _publish(self, result: CoinOperationResult) -> None:
        if not result.success or result.replayed or not result.entries:
            return
        self.publisher.publish(events_from_entries(result.entries))

    def _result(
        self,
        tx: LedgerTransaction,
        account_id: str,
        entries: List[CoinLedgerEntry],
        message: str,
        **extra,
    ) -> CoinOperationResult:
        return CoinOperationResult(
            success=True,
            message=message,
            wallet=tx.wallets.get_wallet(account_id),
            entries=[LedgerEntryResponse.model_validate(e) for e in entries],
            **extra,
        )

    def _replay_single(
        self,
        tx: LedgerTransaction,
        idempotency_key: str,
        account_id: str,
        entry_types: Set[LedgerEntryType],
        operation: str,
        reference_id: Optional[str] = None,
        amount: Optional[int] = None,
    ) -> Optional[CoinOperationResult]:
        """
        이미 적용된 멱등성 키면 기존 항목으로 응답 (쓰기 없음)

        같은 키라도 계정, 유형, reference_id, 부호 있는 변동량 중 하나라도 다르면
        다른 요청으로 보고 IDEMPOTENCY_CONFLICT를 돌려줍니다.
        reference_id / amount가 None이면 해당 항목은 비교하지 않습니다.
        """
        entry = tx.ledger.find_by_idempotency_key(idempotency_key)
        if entry is None:
            return None

        mismatched = (
            entry.account_id != account_id
            or LedgerEntryType(entry.entry_type) not in entry_types
            or (reference_id is not None and entry.reference_id != reference_id)
            or (amount is not None and entry.amount != amount)
        )
        if mismatched:
            logger.warning(
                f"Idempotency key {idempotency_key} reused for a different {operation} request"
            )
            return CoinOperationResult.failure(
                CoinErrorCode.IDEMPOTENCY_CONFLICT,
                "This request key was already used for a different operation",
                wallet=tx.wallets.get_wallet(account_id),
            )

        logger.info(f"Idempotent replay of {operation} for key {idempotency_key}")
        return self._result(
            tx, account_id, [entry], "Already processed", replayed=True
        )

    # ------------------------------------------------------------------
    # Earn
    # ------------------------------------------------------------------

    def credit_daily_bonus(self, account_id: str) -> CoinOperationResult:
        """일일 로그인 보너스 (로컬 달력 날짜 기준 하루 1회)"""
        now = self._now()
        amount = self.settings.DAILY_BONUS_COINS

        def work(tx: LedgerTransaction) -> CoinOperationResult:
            entry = tx.wallets.claim_daily_bonus(account_id, amount, now)
            return self._result(tx, account_id, [entry], f"Daily bonus of {amount} coin(s) credited")

        return self._execute("credit_daily_bonus", work, account_id)

    def redeem_key(self, account_id: str, code: str) -> CoinOperationResult:
        now = self._now()

        def work(tx: LedgerTransaction) -> CoinOperationResult:
            key, entry = tx.keys.redeem(code, account_id, now)
            return self._result(
                tx, account_id, [entry], f"Redeemed {key.coin_amount} coins"
            )

        return self._execute("redeem_key", work, account_id)

    def credit_package_purchase(
        self, account_id: str, package_id: str, store_transaction_id: str
    ) -> CoinOperationResult:
        """인앱 결제가 확인된 코인 패키지 적립 (스토어 결제 ID당 1회)"""
        package = pricing.get_package(package_id)
        if package is None:
            return CoinOperationResult.failure(
                CoinErrorCode.UNKNOWN_PACKAGE,
                f"Unknown coin package: {package_id}",
                wallet=self.get_wallet(account_id),
            )

        idempotency_key = f"purchase:{store_transaction_id}"
        now = self._now()

        def replay(tx: LedgerTransaction) -> Optional[CoinOperationResult]:
            return self._replay_single(
                tx,
                idempotency_key,
                account_id,
                {LedgerEntryType.PURCHASE},
                "package purchase",
                reference_id=store_transaction_id,
                amount=package.total_coins,
            )

        def work(tx: LedgerTransaction) -> CoinOperationResult:
            entry = tx.wallets.credit(
                account_id=account_id,
                amount=package.total_coins,
                entry_type=LedgerEntryType.PURCHASE,
                reference_id=store_transaction_id,
                note=f"Coin package {package.id} ({package.store_product_id})",
                idempotency_key=idempotency_key,
                now=now,
            )
            return self._result(
                tx, account_id, [entry], f"{package.total_coins} coins added"
            )

        return self._execute(
            "credit_package_purchase",
            work,
            account_id,
            replay=replay,
            idempotency_key=idempotency_key,
        )

    def credit_reward(
        self,
        account_id: str,
        entry_type: LedgerEntryType,
        amount: int,
        idempotency_key: str,
        note: str = "",
    ) -> CoinOperationResult:
        """프로모션/추천 보상 적립"""
        if entry_type not in REWARD_TYPES:
            return CoinOperationResult.failure(
                CoinErrorCode.INVALID_AMOUNT,
                f"{entry_type.value} is not a reward type",
                wallet=self.get_wallet(account_id),
            )
        now = self._now()

        def replay(tx: LedgerTransaction) -> Optional[CoinOperationResult]:
            return self._replay_single(
                tx, idempotency_key, account_id, {entry_type}, "reward", amount=amount
            )

        def work(tx: LedgerTransaction) -> CoinOperationResult:
            entry = tx.wallets.credit(
                account_id=account_id,
                amount=amount,
                entry_type=entry_type,
                note=note,
                idempotency_key=idempotency_key,
                now=now,
            )
            return self._result(tx, account_id, [entry], f"{amount} coins credited")

        return self._execute(
            "credit_reward", work, account_id, replay=replay, idempotency_key=idempotency_key
        )

    # ------------------------------------------------------------------
    # Spend
    # ------------------------------------------------------------------

    def _charge(
        self,
        operation: str,
        account_id: str,
        entry_type: LedgerEntryType,
        reference_id: str,
        coin_cost: int,
        idempotency_key: str,
        note: str,
    ) -> CoinOperationResult:
        now = self._now()

        def replay(tx: LedgerTransaction) -> Optional[CoinOperationResult]:
            return self._replay_single(
                tx,
                idempotency_key,
                account_id,
                {entry_type},
                operation,
                reference_id=reference_id,
                amount=-coin_cost,
            )

        def work(tx: LedgerTransaction) -> CoinOperationResult:
            entry = tx.wallets.debit(
                account_id=account_id,
                amount=coin_cost,
                entry_type=entry_type,
                reference_id=reference_id,
                note=note,
                idempotency_key=idempotency_key,
                now=now,
            )
            return self._result(tx, account_id, [entry], f"{coin_cost} coins charged")

        return self._execute(
            operation, work, account_id, replay=replay, idempotency_key=idempotency_key
        )

    def charge_course_unlock(
        self, account_id: str, course_id: str, coin_cost: int, idempotency_key: str
    ) -> CoinOperationResult:
        return self._charge(
            "charge_course_unlock",
            account_id,
            LedgerEntryType.COURSE_UNLOCK,
            course_id,
            coin_cost,
            idempotency_key,
            f"Unlocked course {course_id}",
        )

    def charge_booking(
        self, account_id: str, booking_ref: str, coin_cost: int, idempotency_key: str
    ) -> CoinOperationResult:
        return self._charge(
            "charge_booking",
            account_id,
            LedgerEntryType.BOOKING_CHARGE,
            booking_ref,
            coin_cost,
            idempotency_key,
            f"Booking {booking_ref}",
        )

    def charge_training_plan(
        self, account_id: str, plan_order_ref: str, coin_cost: int, idempotency_key: str
    ) -> CoinOperationResult:
        return self._charge(
            "charge_training_plan",
            account_id,
            LedgerEntryType.PLAN_CHARGE,
            plan_order_ref,
            coin_cost,
            idempotency_key,
            f"Training plan order {plan_order_ref}",
        )

    def charge_video_review(
        self, account_id: str, submission_ref: str, coin_cost: int, idempotency_key: str
    ) -> CoinOperationResult:
        return self._charge(
            "charge_video_review",
            account_id,
            LedgerEntryType.REVIEW_CHARGE,
            submission_ref,
            coin_cost,
            idempotency_key,
            f"Video review submission {submission_ref}",
        )

    def charge(
        self,
        account_id: str,
        kind: ChargeKind,
        reference_id: str,
        coin_cost: int,
        idempotency_key: str,
    ) -> CoinOperationResult:
        handlers = {
            ChargeKind.BOOKING: self.charge_booking,
            ChargeKind.TRAINING_PLAN: self.charge_training_plan,
            ChargeKind.VIDEO_REVIEW: self.charge_video_review,
        }
        return handlers[kind](account_id, reference_id, coin_cost, idempotency_key)

    def record_sale_and_payout(
        self,
        course_id: str,
        buyer_account_id: str,
        coin_amount: int,
        idempotency_key: str,
        price_eur=None,
    ) -> CoinOperationResult:
        """
        코인 결제 강좌 판매 처리

        하나의 트랜잭션에서 다음을 수행합니다:
        1. 구매자 차감 (course_unlock)
        2. 활성 수수료별 트레이너 지급 (commission_payout)
        3. 구매자 캐시백 (cashback, 0이면 생략)

        상태: INITIATED → BALANCE_CHECKED → DEBITED → PAYOUTS_APPLIED → CASHBACK_CREDITED → COMPLETED
        실패 시 아무것도 기록되지 않으며 결과의 purchase_state는 INITIATED입니다.
        커밋 이후의 취소는 refund 항목으로만 가능합니다.
        """
        now = self._now()
        operation = "record_sale_and_payout"

        def accounts(tx: LedgerTransaction) -> List[str]:
            return [buyer_account_id] + tx.commissions.active_trainer_ids(course_id)

        def replay(tx: LedgerTransaction) -> Optional[CoinOperationResult]:
            entries = tx.ledger.find_sale_entries(idempotency_key)
            if not entries:
                return None

            debit = entries[0]
            if (
                debit.account_id != buyer_account_id
                or debit.entry_type != LedgerEntryType.COURSE_UNLOCK.value
                or debit.reference_id != course_id
                or debit.amount != -coin_amount
            ):
                logger.warning(
                    f"Idempotency key {idempotency_key} reused for a different sale request"
                )
                return CoinOperationResult.failure(
                    CoinErrorCode.IDEMPOTENCY_CONFLICT,
                    "This request key was already used for a different operation",
                    wallet=tx.wallets.get_wallet(buyer_account_id),
                    purchase_state=PurchaseState.INITIATED,
                )

            logger.info(f"Idempotent replay of {operation} for key {idempotency_key}")
            payouts = [
                PayoutLine(trainer_id=e.account_id, payout_amount=e.amount, entry_id=e.id)
                for e in entries
                if e.entry_type == LedgerEntryType.COMMISSION_PAYOUT.value
            ]
            return self._result(
                tx,
                buyer_account_id,
                entries,
                "Already processed",
                replayed=True,
                purchase_state=PurchaseState.COMPLETED,
                payouts=payouts,
            )

        def work(tx: LedgerTransaction) -> CoinOperationResult:
            try:
                if price_eur is not None:
                    cashback = pricing.cashback_coins(price_eur, self.settings)
                else:
                    cashback = pricing.cashback_coins(
                        pricing.coins_to_eur(coin_amount, self.settings), self.settings
                    )
            except pricing.InvalidPriceError as e:
                raise CoinOperationFailed(CoinErrorCode.INVALID_AMOUNT, str(e))

            debit = tx.wallets.debit(
                account_id=buyer_account_id,
                amount=coin_amount,
                entry_type=LedgerEntryType.COURSE_UNLOCK,
                reference_id=course_id,
                note=f"Unlocked course {course_id}",
                idempotency_key=idempotency_key,
                now=now,
            )
            entries = [debit]

            payouts = tx.commissions.apply_payout(
                course_id, coin_amount, course_id, idempotency_key, now=now
            )
            entries.extend(tx.ledger.get_entry(line.entry_id) for line in payouts)

            if cashback > 0:
                entries.append(
                    tx.wallets.credit(
                        account_id=buyer_account_id,
                        amount=cashback,
                        entry_type=LedgerEntryType.CASHBACK,
                        reference_id=course_id,
                        note=f"{self.settings.CASHBACK_PERCENT}% cashback for course {course_id}",
                        idempotency_key=f"{idempotency_key}:cashback",
                        now=now,
                    )
                )
            logger.info(
                f"Sale of course {course_id} to {buyer_account_id} for {coin_amount} coins completed"
            )

            return self._result(
                tx,
                buyer_account_id,
                entries,
                f"Course {course_id} unlocked",
                purchase_state=PurchaseState.COMPLETED,
                payouts=payouts,
            )

        return self._execute(
            operation,
            work,
            buyer_account_id,
            accounts=accounts,
            replay=replay,
            idempotency_key=idempotency_key,
            failure_state=PurchaseState.INITIATED,
        )

    def unlock_course(
        self, account_id: str, course_id: str, price_eur, idempotency_key: str
    ) -> CoinOperationResult:
        """EUR 가격의 강좌를 코인으로 구매 (필요 코인은 올림)"""
        try:
            coin_cost = pricing.coins_for_price(price_eur, self.settings)
        except pricing.InvalidPriceError as e:
            return CoinOperationResult.failure(
                CoinErrorCode.INVALID_AMOUNT,
                str(e),
                wallet=self.get_wallet(account_id),
                purchase_state=PurchaseState.INITIATED,
            )

        if coin_cost <= 0:
            return CoinOperationResult.failure(
                CoinErrorCode.INVALID_AMOUNT,
                "Free courses do not need coins",
                wallet=self.get_wallet(account_id),
                purchase_state=PurchaseState.INITIATED,
            )

        return self.record_sale_and_payout(
            course_id, account_id, coin_cost, idempotency_key, price_eur=price_eur
        )

    # ------------------------------------------------------------------
    # Corrections
    # ------------------------------------------------------------------

    def refund(
        self,
        account_id: str,
        original_entry_id: int,
        reason: str,
        idempotency_key: Optional[str] = None,
    ) -> CoinOperationResult:
        """
        차감 항목 환불

        원래 항목은 수정하지 않고, 원래 항목 ID를 reference_id로 갖는 새 적립 항목을 추가합니다.
        차감 1건당 환불은 1건만 가능합니다.
        """
        idempotency_key = idempotency_key or f"refund:{original_entry_id}"
        now = self._now()

        def replay(tx: LedgerTransaction) -> Optional[CoinOperationResult]:
            return self._replay_single(
                tx,
                idempotency_key,
                account_id,
                set(REFUND_TYPES.values()),
                "refund",
                reference_id=str(original_entry_id),
            )

        def work(tx: LedgerTransaction) -> CoinOperationResult:
            original = tx.ledger.get_entry(original_entry_id)
            if original is None or original.account_id != account_id:
                raise CoinOperationFailed(
                    CoinErrorCode.ENTRY_NOT_FOUND, "Transaction not found"
                )

            refund_type = REFUND_TYPES.get(LedgerEntryType(original.entry_type))
            if refund_type is None:
                raise CoinOperationFailed(
                    CoinErrorCode.NOT_REFUNDABLE, "Only charges can be refunded"
                )
            if tx.ledger.find_refund_for(account_id, original_entry_id) is not None:
                raise CoinOperationFailed(
                    CoinErrorCode.NOT_REFUNDABLE, "This charge was already refunded"
                )

            entry = tx.wallets.credit(
                account_id=account_id,
                amount=-original.amount,
                entry_type=refund_type,
                reference_id=str(original.id),
                note=reason,
                idempotency_key=idempotency_key,
                now=now,
            )
            return self._result(tx, account_id, [entry], f"{entry.amount} coins refunded")

        return self._execute(
            "refund", work, account_id, replay=replay, idempotency_key=idempotency_key
        )

    def admin_adjust(
        self,
        account_id: str,
        delta: int,
        admin_id: str,
        reason: str,
        idempotency_key: Optional[str] = None,
    ) -> CoinOperationResult:
        """관리자 지급(양수) / 회수(음수)"""
        idempotency_key = idempotency_key or f"admin_adjust:{uuid.uuid4()}"
        now = self._now()
        note = f"{reason} (by {admin_id})"

        def replay(tx: LedgerTransaction) -> Optional[CoinOperationResult]:
            return self._replay_single(
                tx,
                idempotency_key,
                account_id,
                {LedgerEntryType.ADMIN_GRANT, LedgerEntryType.ADMIN_REMOVE},
                "admin adjustment",
                reference_id=admin_id,
                amount=delta,
            )

        def work(tx: LedgerTransaction) -> CoinOperationResult:
            if delta == 0:
                raise CoinOperationFailed(
                    CoinErrorCode.INVALID_AMOUNT, "Adjustment must not be zero"
                )
            if delta > 0:
                entry = tx.wallets.credit(
                    account_id, delta, LedgerEntryType.ADMIN_GRANT, admin_id, note, idempotency_key, now
                )
            else:
                entry = tx.wallets.debit(
                    account_id, -delta, LedgerEntryType.ADMIN_REMOVE, admin_id, note, idempotency_key, now
                )
            logger.info(f"Admin {admin_id} adjusted {account_id} by {delta}: {reason}")
            return self._result(tx, account_id, [entry], f"Balance adjusted by {delta}")

        return self._execute(
            "admin_adjust", work, account_id, replay=replay, idempotency_key=idempotency_key
        )

    def admin_set_balance(
        self, account_id: str, new_balance: int, admin_id: str
    ) -> CoinOperationResult:
        """관리자 잔액 직접 설정 - 차이만큼 지급/회수 항목을 기록"""
        now = self._now()
        idempotency_key = f"admin_set:{uuid.uuid4()}"

        def work(tx: LedgerTransaction) -> CoinOperationResult:
            if new_balance < 0:
                raise CoinOperationFailed(
                    CoinErrorCode.INVALID_AMOUNT, "Balance cannot be negative"
                )
            wallet = tx.wallets.lock(account_id)
            diff = new_balance - wallet.balance
            if diff == 0:
                return self._result(tx, account_id, [], "Balance unchanged")

            note = f"Balance set to {new_balance} (by {admin_id})"
            if diff > 0:
                entry = tx.wallets.credit(
                    account_id, diff, LedgerEntryType.ADMIN_GRANT, admin_id, note, idempotency_key, now
                )
            else:
                entry = tx.wallets.debit(
                    account_id, -diff, LedgerEntryType.ADMIN_REMOVE, admin_id, note, idempotency_key, now
                )
            logger.info(f"Admin {admin_id} set balance of {account_id} to {new_balance}")
            return self._result(tx, account_id, [entry], f"Balance set to {new_balance}")

        return self._execute(
            "admin_set_balance", work, account_id, idempotency_key=idempotency_key
        )

    # ------------------------------------------------------------------
    # Redemption keys / commissions (admin)
    # ------------------------------------------------------------------

    def create_redemption_key(
        self,
        admin_id: str,
        coin_amount: int,
        code: Optional[str] = None,
        max_uses: int = 1,
        expires_in_days: Optional[int] = None,
        note: str = "",
    ) -> RedemptionKeyCreateResponse:
        now = self._now()
        expires_in = timedelta(days=expires_in_days) if expires_in_days else None

        try:
            key = self._run(
                "create_redemption_key",
                lambda tx: tx.keys.create(
                    coin_amount=coin_amount,
                    created_by=admin_id,
                    code=code,
                    max_uses=max_uses,
                    expires_in=expires_in,
                    note=note,
                    now=now,
                ),
            )
        except CoinOperationFailed as e:
            return RedemptionKeyCreateResponse(
                success=False, error_code=e.error_code.value, message=e.message
            )

        return RedemptionKeyCreateResponse(success=True, message="Code created", key=key)

    def list_redemption_keys(self, limit: int = 100) -> RedemptionKeyListResponse:
        with session_scope(self.session_factory) as db:
            return LedgerTransaction(db, self.settings).keys.list_keys(limit, self._now())

    def key_redemption_history(self, key_id: str) -> Optional[List[KeyRedemptionRecordResponse]]:
        """교환 기록 - 코드가 없으면 None"""
        with session_scope(self.session_factory) as db:
            keys = LedgerTransaction(db, self.settings).keys
            if keys.get_key(key_id) is None:
                return None
            return keys.redemption_history(key_id)

    def set_commission(
        self,
        course_id: str,
        trainer_id: str,
        commission_percent: int,
        admin_id: str,
        notes: Optional[str] = None,
    ) -> CommissionSaveResponse:
        try:
            return self._run(
                "set_commission",
                lambda tx: tx.commissions.set_commission(
                    course_id, trainer_id, commission_percent, admin_id, notes
                ),
            )
        except CoinOperationFailed as e:
            return CommissionSaveResponse(
                success=False, error_code=e.error_code.value, message=e.message
            )

    def set_commission_active(
        self, commission_id: str, is_active: bool, admin_id: str
    ) -> Optional[CommissionSaveResponse]:
        return self._run(
            "set_commission_active",
            lambda tx: tx.commissions.set_active(commission_id, is_active, admin_id),
        )

    def course_commissions(self, course_id: str) -> CourseCommissionSummary:
        with session_scope(self.session_factory) as db:
            return LedgerTransaction(db, self.settings).commissions.course_summary(course_id)

    def trainer_earnings(
        self, trainer_id: str, period: EarningsPeriod = EarningsPeriod.THIS_MONTH
    ) -> TrainerEarningsResponse:
        now = self._now()
        with session_scope(self.session_factory) as db:
            return LedgerTransaction(db, self.settings).commissions.trainer_earnings(
                trainer_id, period, now
            )

    # ------------------------------------------------------------------
    # Reads / audit
    # ------------------------------------------------------------------

    def get_wallet(self, account_id: str) -> WalletResponse:
        with session_scope(self.session_factory) as db:
            return WalletService(db, self.settings).get_wallet(account_id)

    def wallet_overview(self, account_id: str) -> WalletOverviewResponse:
        with session_scope(self.session_factory) as db:
            wallets = WalletService(db, self.settings)
            wallet = wallets.get_wallet(account_id)
            return WalletOverviewResponse(
                wallet=wallet,
                recent_entries=wallets.history(account_id),
                can_claim_daily_bonus=wallets.can_claim_daily_bonus(
                    wallet.last_daily_bonus_at, self._now()
                ),
                balance_eur=pricing.coins_to_eur(wallet.balance, self.settings),
            )

    def ledger_page(
        self,
        account_id: str,
        limit: int = 50,
        before: Optional[datetime] = None,
        before_id: Optional[int] = None,
    ) -> LedgerPageResponse:
        """원장 페이지 (최신순) - 마지막 항목의 (created_at, id)가 다음 커서"""
        limit = max(1, min(limit, self.settings.WALLET_HISTORY_LIMIT))
        with session_scope(self.session_factory) as db:
            rows = WalletService(db, self.settings).ledger_repo.entries_for(
                account_id, limit=limit + 1, before=before, before_id=before_id
            )

        has_next = len(rows) > limit
        rows = rows[:limit]
        entries = [LedgerEntryResponse.model_validate(r) for r in rows]
        last = entries[-1] if entries and has_next else None
        return LedgerPageResponse(
            account_id=account_id,
            entries=entries,
            has_next=has_next,
            next_before=last.created_at if last else None,
            next_before_id=last.id if last else None,
        )

    def recompute(self, account_id: str) -> int:
        with session_scope(self.session_factory) as db:
            return WalletService(db, self.settings).ledger_repo.recompute(account_id)

    def verify_account_integrity(self, account_id: str) -> IntegrityCheckResponse:
        """
        계정 정합성 검증

        다음 네 값이 모두 같아야 OK:
        - 지갑 캐시 잔액
        - total_earned - total_spent
        - 원장 전체 재계산
        - 최신 항목의 balance_after
        """
        with session_scope(self.session_factory) as db:
            wallets = WalletService(db, self.settings)
            wallet = wallets.get_wallet(account_id)
            recomputed = wallets.ledger_repo.recompute(account_id)
            latest = wallets.ledger_repo.latest_balance(account_id)
            entry_count = wallets.ledger_repo.count_for(account_id)

        earned_minus_spent = wallet.total_earned - wallet.total_spent
        ok = wallet.balance == earned_minus_spent == recomputed == latest
        if not ok:
            audit_logger.error(
                f"Integrity mismatch for {account_id}: wallet={wallet.balance}, "
                f"earned-spent={earned_minus_spent}, recomputed={recomputed}, latest={latest}"
            )

        return IntegrityCheckResponse(
            status="OK" if ok else "MISMATCH",
            account_id=account_id,
            wallet_balance=wallet.balance,
            earned_minus_spent=earned_minus_spent,
            recomputed_balance=recomputed,
            latest_balance_after=latest,
            entry_count=entry_count,
            verified_at=self._now(),
        )

    def verify_global_integrity(self) -> GlobalIntegrityResponse:
        with session_scope(self.session_factory) as db:
            wallets = WalletService(db, self.settings)
            totals = wallets.ledger_repo.global_totals()
            total_wallet_balance = wallets.wallet_repo.total_balance()

        ok = (
            totals["total_balance_from_latest"]
            == totals["total_deltas"]
            == total_wallet_balance
        )
        if not ok:
            audit_logger.error(
                f"Global integrity mismatch: latest={totals['total_balance_from_latest']}, "
                f"deltas={totals['total_deltas']}, wallets={total_wallet_balance}"
            )

        return GlobalIntegrityResponse(
            status="OK" if ok else "MISMATCH",
            total_wallet_balance=total_wallet_balance,
            verified_at=self._now(),
            **totals,
        )

    # ------------------------------------------------------------------
    # Pricing
    # ------------------------------------------------------------------

    def quote(self, price_eur) -> PriceQuoteResponse:
        """Raises pricing.InvalidPriceError"""
        return PriceQuoteResponse(
            price_eur=price_eur,
            coins_required=pricing.coins_for_price(price_eur, self.settings),
            cashback_coins=pricing.cashback_coins(price_eur, self.settings),
        )

    def list_packages(self):
        return pricing.package_responses()
