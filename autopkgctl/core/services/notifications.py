"""
Webhook notifications — post pipeline events as JSON.

Payload::

    {"text": "<message>", "timestamp": <unix seconds>}

Any HTTP status of 400 or above, a transport failure or a malformed
URL raises ``NotificationError``. Callers decide whether that matters;
the pipeline runner only logs it.
"""

from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.request

logger = logging.getLogger(__name__)

_USER_AGENT = "autopkgctl/1.0"


class NotificationError(Exception):
    """Raised when a notification could not be delivered."""


class WebhookNotifier:
    """Posts messages to a single webhook URL."""

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    def send(self, message: str) -> None:
        payload = json.dumps({"text": message, "timestamp": int(time.time())}).encode("utf-8")
        try:
            req = urllib.request.Request(
                self.url,
                data=payload,
                method="POST",
                headers={"Content-Type": "application/json", "User-Agent": _USER_AGENT},
            )
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                status = resp.status
        except urllib.error.HTTPError as e:
            raise NotificationError(f"webhook returned status {e.code}") from e
        except (urllib.error.URLError, OSError) as e:
            raise NotificationError(f"failed to send webhook notification: {e}") from e
        except ValueError as e:
            # Malformed URL, e.g. missing scheme
            raise NotificationError(f"invalid webhook URL {self.url!r}: {e}") from e

        if status >= 400:
            raise NotificationError(f"webhook returned status {status}")
        logger.debug("Webhook notification sent (%d)", status)
