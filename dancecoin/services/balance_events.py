"""
잔액 변경 이벤트 발행

원격 문서 저장소의 실시간 리스너 대신, 커밋이 끝난 뒤에만
계정별 BalanceChangedEvent를 구독자에게 전달합니다.
- 프로세스 내부 구독자 (subscribe)
- 선택적으로 SQS 큐 (SQS_BALANCE_EVENTS_QUEUE)
"""

from collections import OrderedDict
from typing import Callable, Iterable, List, Optional
import logging

from dancecoin.providers.queue.events import BalanceChangedEvent
from dancecoin.providers.queue.sqs import SQSClient
from dancecoin.schemas.coins import LedgerEntryResponse

logger = logging.getLogger(__name__)

Subscriber = Callable[[BalanceChangedEvent], None]


def events_from_entries(
    entries: Iterable[LedgerEntryResponse],
) -> List[BalanceChangedEvent]:
    """원장 항목을 계정별 이벤트 하나로 묶음 (마지막 balance_after가 최종 잔액)"""
    grouped: "OrderedDict[str, List[LedgerEntryResponse]]" = OrderedDict()
    for entry in entries:
        grouped.setdefault(entry.account_id, []).append(entry)

    events = []
    for account_id, account_entries in grouped.items():
        ordered = sorted(account_entries, key=lambda e: e.id)
        events.append(
            BalanceChangedEvent(
                account_id=account_id,
                balance=ordered[-1].balance_after,
                delta=sum(e.amount for e in ordered),
                entry_ids=[e.id for e in ordered],
                occurred_at=ordered[-1].created_at,
            )
        )
    return events


class BalanceEventPublisher:
    def __init__(
        self,
        sqs_client: Optional[SQSClient] = None,
        queue_name: Optional[str] = None,
    ):
        self.sqs_client = sqs_client
        self.queue_name = queue_name
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """구독 등록 - 해제 함수를 반환"""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, events: Iterable[BalanceChangedEvent]) -> None:
        # 이미 커밋된 작업 - 전달 실패는 로그만 남김
        for event in events:
            for callback in list(self._subscribers):
                try:
                    callback(event)
                except Exception:
                    logger.exception(
                        f"Balance event subscriber failed for account {event.account_id}"
                    )

            if self.sqs_client and self.queue_name:
                try:
                    self.sqs_client.send_message(
                        self.queue_name,
                        event.model_dump_json(),
                        group_id=event.account_id,
                        deduplication_id=f"{event.account_id}:{event.entry_ids[-1]}",
                    )
                except Exception:
                    logger.exception(
                        f"Failed to forward balance event for {event.account_id} to SQS"
                    )


def build_balance_publisher(settings) -> BalanceEventPublisher:
    """SQS_BALANCE_EVENTS_QUEUE가 설정되어 있으면 SQS로도 전달"""
    if not settings.SQS_BALANCE_EVENTS_QUEUE:
        return BalanceEventPublisher()
    return BalanceEventPublisher(
        sqs_client=SQSClient(settings),
        queue_name=settings.SQS_BALANCE_EVENTS_QUEUE,
    )
