"""Push notification sink with cooldown, rate limiting and a delivery queue."""

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from queue import Queue, Empty, Full
from typing import Any, Deque, Dict, Optional

import requests

from .interfaces import DetectionSink
from ..config.defaults import SYSTEM_CONSTANTS
from ..models.detection import DetectionEvent
from ..logging_config import get_logger

logger = get_logger("notification_service")


@dataclass
class NotificationConfig:
    """Configuration for notification service."""
    push_enabled: bool = True
    webhook_url: str = ""
    cooldown_minutes: int = 5
    max_per_hour: int = 12
    retry_attempts: int = SYSTEM_CONSTANTS["NOTIFICATION_RETRY_ATTEMPTS"]
    request_timeout_seconds: float = 10.0
    max_queue_size: int = SYSTEM_CONSTANTS["MAX_QUEUE_SIZE"]


@dataclass
class NotificationMessage:
    """Represents a notification message."""
    title: str
    body: str
    pest_type: str
    confidence: Optional[int] = None
    danger_level: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    retry_count: int = 0

    def to_payload(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "body": self.body,
            "data": {
                "pest_type": self.pest_type,
                "confidence": self.confidence,
                "danger_level": self.danger_level,
                "timestamp": self.timestamp.isoformat(),
            }
        }


class NotificationService(DetectionSink):
    """Turns accepted detections into pushed alerts."""

    def __init__(self, config: Optional[NotificationConfig] = None, auto_start: bool = True):
        self.config = config or NotificationConfig()
        self.notification_queue: Queue = Queue(maxsize=self.config.max_queue_size)
        self.last_notification_time: Dict[str, datetime] = {}
        self._sent_times: Deque[datetime] = deque()
        self._lock = threading.Lock()
        self.processing_thread: Optional[threading.Thread] = None
        self.running = False

        self.sent_count = 0
        self.failed_count = 0
        self.skipped_count = 0

        if auto_start:
            self.start_processing()

    def on_detection(self, event: DetectionEvent) -> None:
        if not event.detected or not self.config.push_enabled:
            return

        if not self._reserve_slot(event.pest_type):
            self.skipped_count += 1
            return

        danger = event.species.danger_level if event.species else None
        body = f"{event.pest_type} detected with {event.confidence}% confidence"
        if event.recommendations:
            body += f". {event.recommendations[0]}"

        self.queue_notification(NotificationMessage(
            title="Pest Detected!",
            body=body,
            pest_type=event.pest_type,
            confidence=event.confidence,
            danger_level=danger
        ))

    def _reserve_slot(self, pest_type: str) -> bool:
        """Apply the per-pest cooldown and the hourly cap, claiming a slot if both allow."""
        now = datetime.now()
        with self._lock:
            last = self.last_notification_time.get(pest_type)
            if last is not None and now - last < timedelta(minutes=self.config.cooldown_minutes):
                logger.debug(f"Notification for {pest_type} skipped due to cooldown")
                return False

            hour_ago = now - timedelta(hours=1)
            while self._sent_times and self._sent_times[0] < hour_ago:
                self._sent_times.popleft()
            if len(self._sent_times) >= self.config.max_per_hour:
                logger.debug("Notification skipped, hourly limit reached")
                return False

            self.last_notification_time[pest_type] = now
            self._sent_times.append(now)
            return True

    def queue_notification(self, message: NotificationMessage) -> bool:
        """Queue notification for background delivery."""
        try:
            self.notification_queue.put(message, block=False)
            logger.debug(f"Queued notification for {message.pest_type}")
            return True
        except Full:
            logger.warning("Notification queue is full, dropping notification")
            return False

    def process_queue(self) -> int:
        """Deliver everything currently queued and return how many were sent."""
        sent = 0
        pending = []

        while True:
            try:
                message = self.notification_queue.get(block=False)
            except Empty:
                break

            if self.send_push_notification(message):
                sent += 1
            elif message.retry_count < self.config.retry_attempts:
                message.retry_count += 1
                pending.append(message)
                logger.debug(f"Re-queued notification for retry {message.retry_count}")
            self.notification_queue.task_done()

        for message in pending:
            self.queue_notification(message)
        return sent

    def send_push_notification(self, message: NotificationMessage) -> bool:
        """Send one notification to the configured webhook."""
        if not self.config.webhook_url:
            logger.info(f"Notification (no webhook configured): {message.title} {message.body}")
            self.sent_count += 1
            return True

        try:
            response = requests.post(
                self.config.webhook_url,
                json=message.to_payload(),
                timeout=self.config.request_timeout_seconds
            )
        except requests.RequestException as e:
            self.failed_count += 1
            logger.error(f"Push notification error: {e}")
            return False

        if 200 <= response.status_code < 300:
            self.sent_count += 1
            logger.info("Push notification sent successfully")
            return True

        self.failed_count += 1
        logger.error(f"Push notification failed: {response.status_code} - {response.text}")
        return False

    def start_processing(self) -> None:
        """Start background notification processing."""
        if self.running:
            return
        self.running = True
        self.processing_thread = threading.Thread(target=self._background_processor, daemon=True)
        self.processing_thread.start()
        logger.info("Notification processing started")

    def stop_processing(self) -> None:
        """Stop background notification processing."""
        self.running = False
        if self.processing_thread and self.processing_thread.is_alive():
            self.processing_thread.join(timeout=5.0)
        logger.info("Notification processing stopped")

    def _background_processor(self) -> None:
        while self.running:
            try:
                self.process_queue()
            except Exception as e:
                logger.error(f"Background processor error: {e}")
            time.sleep(1.0)

    def update_config(self, **kwargs) -> None:
        """Update notification configuration."""
        for key, value in kwargs.items():
            if hasattr(self.config, key):
                setattr(self.config, key, value)
                logger.info(f"Updated notification config: {key} = {value}")

    def clear_queue(self) -> int:
        """Clear notification queue and return number of cleared items."""
        cleared = 0
        while True:
            try:
                self.notification_queue.get(block=False)
            except Empty:
                break
            cleared += 1
        logger.info(f"Cleared {cleared} notifications from queue")
        return cleared

    def get_notification_stats(self) -> Dict[str, Any]:
        """Get notification service statistics."""
        return {
            "config": {
                "push_enabled": self.config.push_enabled,
                "webhook_configured": bool(self.config.webhook_url),
                "cooldown_minutes": self.config.cooldown_minutes,
                "max_per_hour": self.config.max_per_hour
            },
            "queue": {
                "size": self.notification_queue.qsize(),
                "max_size": self.config.max_queue_size
            },
            "sent": self.sent_count,
            "failed": self.failed_count,
            "skipped": self.skipped_count,
            "processing": {
                "running": self.running,
                "thread_alive": self.processing_thread.is_alive() if self.processing_thread else False
            }
        }
