"""Best-effort delivery of challenge-solved events.

Subscribers are plain callables invoked in-process; an optional webhook
receives the same event over HTTP from a daemon thread so the request
that solved the challenge never waits on it.

Example:
    >>> notifier = ChallengeNotifier(webhook_url="http://ctf.local/hook")
    >>> notifier.subscribe(lambda event: print(event["name"]))
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from vulnshop.config import SOLUTIONS_WEBHOOK, WEBHOOK_TIMEOUT


logger = logging.getLogger(__name__)

Subscriber = Callable[[Dict[str, Any]], None]


class ChallengeNotifier:
    """Fan-out of solve events to subscribers and an optional webhook.

    Attributes:
        webhook_url: URL receiving a POST per solve, or None.
        timeout: Webhook request timeout in seconds.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = SOLUTIONS_WEBHOOK,
        timeout: float = WEBHOOK_TIMEOUT
    ) -> None:
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> None:
        """Register a callable receiving every solve event."""
        with self._lock:
            self._subscribers.append(callback)

    def notify(self, challenge: Any) -> Dict[str, Any]:
        """Emit a solve event for the challenge and return its payload."""
        event = {
            "key": challenge.key,
            "name": challenge.name,
            "category": challenge.category,
            "issuedOn": datetime.now(timezone.utc).isoformat(),
        }

        with self._lock:
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Challenge notification subscriber failed: {e}")

        if self.webhook_url:
            thread = threading.Thread(
                target=self._post_webhook, args=(event,), name="solutions-webhook"
            )
            thread.daemon = True
            thread.start()

        return event

    def _post_webhook(self, event: Dict[str, Any]) -> None:
        """Send the solve event to the configured webhook."""
        payload = {
            "solution": {
                "challenge": event["key"],
                "name": event["name"],
                "issuedOn": event["issuedOn"],
            }
        }
        try:
            response = httpx.post(self.webhook_url, json=payload, timeout=self.timeout)
            logger.info(
                f"Webhook {self.webhook_url} notified about {event['key']} "
                f"(status {response.status_code})"
            )
        except httpx.HTTPError as e:
            logger.error(f"Webhook {self.webhook_url} notification failed: {e}")
