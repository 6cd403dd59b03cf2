"""
Push target resolution and notification fan-out.

Session keys of the form agent:<agentId>:webchat:dm:<peer...> identify a
direct-message peer; that peer is what subscriptions are routed by.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

logger = logging.getLogger("webchat")

WEBCHAT_CHANNEL = "webchat"
GONE_STATUS_CODES = (404, 410)


def parse_peer_id(session_key: str, agent_id: str = "work") -> Optional[str]:
    if not isinstance(session_key, str):
        return None
    parts = session_key.split(":")
    if len(parts) < 5:
        return None
    if parts[0] != "agent" or parts[1] != agent_id:
        return None
    if parts[2] != WEBCHAT_CHANNEL or parts[3] != "dm":
        return None
    peer_id = ":".join(parts[4:])
    return peer_id or None


def can_subscribe(peer_id: Optional[str], user_id: str) -> bool:
    """A user may only subscribe to peers that carry their own id as a prefix."""
    return bool(peer_id) and bool(user_id) and peer_id.startswith(user_id)


def select_targets(subscriptions: Iterable[Mapping[str, Any]], peer_id: str) -> List[Mapping[str, Any]]:
    """
    Subscriptions that should receive a notification for `peer_id`.

    Rows stored before peer-level routing only carry a user_id; those match
    when the user id is a prefix of the peer.
    """
    targets = []
    for row in subscriptions:
        if row.get("peer_id") == peer_id:
            targets.append(row)
            continue
        user_id = row.get("user_id")
        if isinstance(user_id, str) and peer_id.startswith(user_id):
            targets.append(row)
    return targets


class PushDeliveryError(RuntimeError):
    """Raised by a sender when a push service rejects a notification."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def is_push_gone(exc: BaseException) -> bool:
    return getattr(exc, "status_code", None) in GONE_STATUS_CODES


@dataclass(frozen=True)
class NotificationPayload:
    title: str = "New message"
    body: str = "You have a new message."
    url: str = "/chat"
    icon: str = "/brand/favicon.png"
    badge: str = "/brand/favicon.png"

    def to_json(self) -> str:
        return json.dumps(
            {"title": self.title, "body": self.body, "url": self.url, "icon": self.icon, "badge": self.badge}
        )


@dataclass
class DeliveryReport:
    delivered: int = 0
    failed: int = 0
    removed: int = 0


class PushSender:
    """Abstract push transport."""

    def send(self, subscription: Dict[str, Any], payload: NotificationPayload) -> None:  # pragma: no cover - interface only
        raise NotImplementedError


class WebPushSender(PushSender):
    """Deliver notifications with pywebpush using the configured VAPID keys."""

    def __init__(self, private_key: str, subject: str, ttl: int = 60) -> None:
        self.private_key = private_key
        self.subject = subject
        self.ttl = ttl

    def send(self, subscription: Dict[str, Any], payload: NotificationPayload) -> None:  # pragma: no cover - network
        from pywebpush import WebPushException, webpush

        try:
            webpush(
                subscription_info=subscription,
                data=payload.to_json(),
                vapid_private_key=self.private_key,
                vapid_claims={"sub": self.subject},
                ttl=self.ttl,
            )
        except WebPushException as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            raise PushDeliveryError(str(exc), status_code=status_code) from exc


def subscription_info(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "endpoint": row["endpoint"],
        "keys": {"p256dh": row["p256dh"], "auth": row["auth"]},
    }


def fan_out(
    targets: Iterable[Mapping[str, Any]],
    sender: PushSender,
    payload: NotificationPayload,
    on_gone: Optional[Callable[[str], None]] = None,
) -> DeliveryReport:
    """
    Deliver `payload` to every target independently.

    A failure never stops the loop. Gone subscriptions (404/410) are handed
    to `on_gone` for deletion; other failures are only counted.
    """
    report = DeliveryReport()
    for row in targets:
        endpoint = row.get("endpoint")
        try:
            sender.send(subscription_info(row), payload)
        except Exception as exc:
            report.failed += 1
            if is_push_gone(exc) and on_gone is not None and endpoint:
                try:
                    on_gone(str(endpoint))
                    report.removed += 1
                except Exception as delete_exc:
                    logger.warning("failed to delete gone subscription endpoint=%s: %s", endpoint, delete_exc)
            else:
                logger.warning("push delivery failed endpoint=%s: %s", endpoint, exc)
            continue
        report.delivered += 1
    return report
