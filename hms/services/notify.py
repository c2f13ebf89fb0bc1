from dataclasses import asdict, dataclass, field
import json
import logging

import httpx

from hms.models.core import Notification

log = logging.getLogger(__name__)


@dataclass
class Alert:
    tag: str
    title: str
    body: str
    data: dict = field(default_factory=dict)
    branch_id: str | None = None


class DbNotifier:
    """Stores alerts as Notification rows, read back through GET /notifications."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def notify(self, alert: Alert) -> None:
        with self.session_factory() as db:
            db.add(Notification(
                branch_id=alert.branch_id, tag=alert.tag, title=alert.title,
                body=alert.body, data=json.dumps(alert.data, default=str),
            ))
            db.commit()


class WebhookNotifier:
    def __init__(self, url: str, timeout: float = 3, transport: httpx.BaseTransport | None = None):
        self.url = url
        self.timeout = timeout
        self.transport = transport

    def notify(self, alert: Alert) -> None:
        # delivery is best effort; a dead webhook must not break the sweep
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                client.post(self.url, json=json.loads(json.dumps(asdict(alert), default=str))).raise_for_status()
        except httpx.HTTPError as e:
            log.warning("webhook %s failed for %s alert: %s", self.url, alert.tag, e)


class FanoutNotifier:
    def __init__(self, *notifiers):
        self.notifiers = list(notifiers)

    def notify(self, alert: Alert) -> None:
        for n in self.notifiers:
            n.notify(alert)


def build_notifier(session_factory, webhook_url: str | None = None):
    db = DbNotifier(session_factory)
    if not webhook_url:
        return db
    return FanoutNotifier(db, WebhookNotifier(webhook_url))
