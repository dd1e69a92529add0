"""
Push notification rendering and click routing.

Display itself belongs to the host: the worker hands a Notification to a
NotificationSink and, on click, focuses or opens a client window.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Protocol, Union

logger = logging.getLogger("worker.notifications")


@dataclass
class Notification:
    title: str
    body: str
    icon: str
    badge: str
    data: Any = None
    closed: bool = field(default=False, compare=False)

    def close(self) -> None:
        self.closed = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "body": self.body,
            "icon": self.icon,
            "badge": self.badge,
            "data": self.data,
        }


class NotificationSink(Protocol):
    """Displays notifications."""

    def show(self, notification: Notification) -> None:
        ...


class ClientWindow(Protocol):
    url: str

    def focus(self) -> None:
        ...


class WindowClients(Protocol):
    """Open windows of the host application."""

    def match_all(self) -> Iterable[ClientWindow]:
        ...

    def open_window(self, url: str) -> Optional[ClientWindow]:
        ...


class NotificationRenderer:
    """Builds notifications from push payloads, filling in defaults."""

    def __init__(
        self,
        default_title: str,
        default_body: str,
        icon: str,
        badge: str,
    ):
        self.default_title = default_title
        self.default_body = default_body
        self.icon = icon
        self.badge = badge

    @classmethod
    def from_settings(cls, settings) -> "NotificationRenderer":
        return cls(
            default_title=settings.notification_title,
            default_body=settings.notification_body,
            icon=settings.notification_icon,
            badge=settings.notification_badge,
        )

    def render(self, payload: Union[bytes, str, Dict[str, Any], None]) -> Optional[Notification]:
        """
        Render a push payload.

        Returns:
            None when the push carried no payload
        """
        if payload is None or payload == b"" or payload == "":
            return None
        if isinstance(payload, (bytes, str)):
            payload = json.loads(payload)
        if not isinstance(payload, dict):
            raise ValueError("Push payload must be a JSON object")

        return Notification(
            title=payload.get("title") or self.default_title,
            body=payload.get("body") or self.default_body,
            icon=self.icon,
            badge=self.badge,
            data=payload.get("data"),
        )


def route_click(
    notification: Notification,
    clients: WindowClients,
    root_url: str,
) -> Optional[ClientWindow]:
    """
    Handle a notification click.

    Closes the notification, then focuses a window already showing the root
    URL, or opens a new one.
    """
    notification.close()
    for client in clients.match_all():
        if client.url == root_url:
            client.focus()
            return client
    logger.debug(f"No open window at {root_url}, opening one")
    return clients.open_window(root_url)
