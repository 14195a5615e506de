from __future__ import annotations

import datetime as dt
import json
from typing import Callable, Optional

import pika
import structlog

logger = structlog.get_logger(__name__)


def _connect(url: str) -> pika.BlockingConnection:
    params = pika.URLParameters(url)
    # a few sane defaults
    params.heartbeat = 30
    params.blocked_connection_timeout = 30
    params.socket_timeout = 10
    return pika.BlockingConnection(params)


class EventPublisher:
    """Publishes JSON domain events to a topic exchange. Disabled without a broker URL."""

    def __init__(
        self,
        url: str,
        exchange: str,
        connect: Optional[Callable[[str], pika.BlockingConnection]] = None,
    ) -> None:
        self.url = url
        self.exchange = exchange
        self._connect = connect or _connect

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def publish(self, routing_key: str, payload: dict) -> bool:
        if not self.enabled:
            return True

        event = {
            "event": routing_key,
            "occurred_at": dt.datetime.now(dt.timezone.utc).isoformat().replace("+00:00", "Z"),
            **payload,
        }
        connection = self._connect(self.url)
        try:
            ch = connection.channel()
            ch.exchange_declare(exchange=self.exchange, exchange_type="topic", durable=True)
            body = json.dumps(event, ensure_ascii=False, default=str).encode("utf-8")
            ch.basic_publish(
                exchange=self.exchange,
                routing_key=routing_key,
                body=body,
                properties=pika.BasicProperties(
                    content_type="application/json",
                    delivery_mode=2,  # persistent
                ),
            )
        finally:
            connection.close()

        logger.info("event.published", routing_key=routing_key)
        return True
