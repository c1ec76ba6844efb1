"""
RabbitMQ Queue Manager for insight job wake-ups.

The insight_jobs table is the durable outbox; messages on the per-configuration
queues only tell a worker that new rows are waiting.
"""

import pika
import json
import logging
from typing import Dict, Any, Optional
from contextlib import contextmanager

from tracker_sync.core.config import get_settings

logger = logging.getLogger(__name__)

MESSAGE_TTL_MS = 86400000  # 24 hours


class QueueManager:
    """Manages RabbitMQ connections, queue declaration and publish/get."""

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        vhost: Optional[str] = None
    ):
        settings = get_settings()
        self.host: str = host or settings.RABBITMQ_HOST
        self.port: int = port if port is not None else settings.RABBITMQ_PORT
        self.username: str = username or settings.RABBITMQ_USER
        self.password: str = password or settings.RABBITMQ_PASSWORD
        self.vhost: str = vhost or settings.RABBITMQ_VHOST

        logger.info(f"QueueManager initialized: {self.username}@{self.host}:{self.port}/{self.vhost}")

    @staticmethod
    def get_insight_queue_name(config_id: int) -> str:
        """Per-configuration queue name, e.g. 'insight_queue_config_3'."""
        return f"insight_queue_config_{config_id}"

    def _get_connection(self) -> pika.BlockingConnection:
        credentials = pika.PlainCredentials(self.username, self.password)
        parameters = pika.ConnectionParameters(
            host=self.host,
            port=self.port,
            virtual_host=self.vhost,
            credentials=credentials,
            heartbeat=600,
            blocked_connection_timeout=300
        )

        try:
            return pika.BlockingConnection(parameters)
        except Exception as e:
            logger.error(f"Failed to connect to RabbitMQ: {e}")
            raise

    @contextmanager
    def get_channel(self):
        """
        Context manager for RabbitMQ channel.
        Automatically closes connection when done.
        """
        connection = None
        channel = None
        try:
            connection = self._get_connection()
            channel = connection.channel()
            yield channel
        finally:
            if channel and channel.is_open:
                channel.close()
            if connection and connection.is_open:
                connection.close()

    def _declare(self, channel, queue_name: str):
        channel.queue_declare(
            queue=queue_name,
            durable=True,  # Survive broker restart
            arguments={'x-message-ttl': MESSAGE_TTL_MS}
        )

    def publish_insight_job(self, config_id: int, job_id: int, insight_type: str) -> bool:
        """
        Publish a wake-up message for an enqueued insight job.

        Returns:
            bool: True if published successfully
        """
        message = {'config_id': config_id, 'job_id': job_id, 'insight_type': insight_type}
        return self.publish_message(self.get_insight_queue_name(config_id), message)

    def publish_message(self, queue_name: str, message: Dict[str, Any]) -> bool:
        """
        Publish a persistent JSON message to a queue.

        Returns:
            bool: True if published successfully
        """
        try:
            with self.get_channel() as channel:
                self._declare(channel, queue_name)
                channel.basic_publish(
                    exchange='',
                    routing_key=queue_name,
                    body=json.dumps(message),
                    properties=pika.BasicProperties(
                        delivery_mode=2,  # Make message persistent
                        content_type='application/json'
                    )
                )
            logger.info(f"Message published to {queue_name}: {message}")
            return True
        except Exception as e:
            logger.error(f"Failed to publish message to {queue_name}: {e}")
            return False

    def get_single_message(self, queue_name: str) -> Optional[Dict[str, Any]]:
        """
        Get a single message from the queue.

        Returns:
            Message dict if available, None if no message
        """
        try:
            with self.get_channel() as channel:
                self._declare(channel, queue_name)
                method_frame, header_frame, body = channel.basic_get(queue=queue_name, auto_ack=False)
                if not method_frame:
                    return None

                try:
                    message = json.loads(body)
                except ValueError as e:
                    logger.error(f"Dropping unparseable message on {queue_name}: {e}")
                    channel.basic_nack(delivery_tag=method_frame.delivery_tag, requeue=False)
                    return None

                channel.basic_ack(delivery_tag=method_frame.delivery_tag)
                return message

        except Exception as e:
            logger.error(f"Error getting message from {queue_name}: {e}")
            return None


# Global queue manager instance
_queue_manager: Optional[QueueManager] = None


def get_queue_manager() -> QueueManager:
    """
    Get the global queue manager instance.
    Creates it if it doesn't exist.
    """
    global _queue_manager
    if _queue_manager is None:
        _queue_manager = QueueManager()
    return _queue_manager
