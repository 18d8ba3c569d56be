from typing import Optional

import boto3

from dancecoin.config import Settings


class SQSClient:
    def __init__(self, settings: Settings):
        self.sqs = boto3.client(
            'sqs',
            region_name=settings.AWS_REGION,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
            endpoint_url=settings.SQS_ENDPOINT_URL
        )
        self._queue_urls = {}

    def _queue_url(self, queue_name: str) -> str:
        if queue_name not in self._queue_urls:
            self._queue_urls[queue_name] = self.sqs.get_queue_url(QueueName=queue_name)['QueueUrl']
        return self._queue_urls[queue_name]

    def send_message(
        self,
        queue_name: str,
        message_body: str,
        group_id: Optional[str] = None,
        deduplication_id: Optional[str] = None,
    ):
        params = {
            'QueueUrl': self._queue_url(queue_name),
            'MessageBody': message_body,
        }
        # FIFO 큐: 계정 단위 순서 보장
        if queue_name.endswith('.fifo'):
            if group_id:
                params['MessageGroupId'] = group_id
            if deduplication_id:
                params['MessageDeduplicationId'] = deduplication_id
        self.sqs.send_message(**params)
