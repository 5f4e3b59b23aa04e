from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional
import logging
from authz.context import OpsContext
from notify.mailer import MailResult
from notify.templates import render_standard_email
from observability import metrics
from state.errors import NotFoundError, NotificationDeliveryError
from state.models import Notification, new_id

logger = logging.getLogger("notify.dispatcher")

DEFAULT_CHURCH_NAME = "Ministry Ops"


@dataclass
class NotificationEvent:
    recipient_id: str
    title: str
    description: str
    link: Optional[str] = None
    type: Optional[str] = None


@dataclass
class DispatchReport:
    notification_id: Optional[str] = None
    email_sent: bool = False
    errors: List[NotificationDeliveryError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class NotificationDispatcher:
    """In-app record plus best-effort email for one recipient.

    Fire-and-forget: no retries, and no failure ever reaches the caller.
    """

    def __init__(self, db, mailer):
        self._db = db
        self._mailer = mailer

    def dispatch(self, ctx: OpsContext, event: NotificationEvent) -> DispatchReport:
        report = DispatchReport()
        try:
            row = self._db.insert(
                "notifications",
                Notification(
                    id=new_id(),
                    church_id=ctx.tenant_id,
                    member_id=event.recipient_id,
                    title=event.title,
                    description=event.description,
                    link=event.link,
                    type=event.type,
                ).to_row(),
            )
            report.notification_id = row["id"]
            metrics.inc("notifications.in_app")
        except Exception as exc:  # noqa: BLE001
            # logged only; the user is not told about in-app misses
            self._fail(report, "in_app", event, str(exc), exc_info=True)

        try:
            self._send_email(ctx, event, report)
        except Exception as exc:  # noqa: BLE001
            self._fail(report, "email", event, str(exc), exc_info=True)
            ctx.warn(f"Email notification to {event.recipient_id} could not be sent.")
        return report

    def _send_email(self, ctx: OpsContext, event: NotificationEvent, report: DispatchReport):
        members = self._db.query("members", {"id": event.recipient_id}, projection=["id", "name", "email"])
        email = members[0].get("email") if members else None
        if not email:
            self._fail(report, "email", event, "no email on file")
            ctx.warn(f"No email on file for {event.recipient_id}; only the in-app notice was created.")
            return
        church_name = self._church_name(ctx.tenant_id)
        html = render_standard_email(
            title=event.title,
            description=event.description,
            church_name=church_name,
            notification_type=event.type,
            link=event.link,
        )
        result: MailResult = self._mailer.send(email, f"[{church_name}] {event.title}", html)
        if not result.ok:
            self._fail(report, "email", event, result.reason or "unknown")
            ctx.warn(f"Email notification to {email} could not be sent.")
            return
        report.email_sent = True
        metrics.inc("notifications.email")
        logger.info("Email sent to %s (id=%s)", event.recipient_id, result.message_id)

    def _church_name(self, tenant_id: str) -> str:
        rows = self._db.query("churches", {"id": tenant_id}, projection=["name"])
        return rows[0]["name"] if rows and rows[0].get("name") else DEFAULT_CHURCH_NAME

    @staticmethod
    def _fail(report: DispatchReport, channel: str, event: NotificationEvent, reason: str, exc_info: bool = False):
        error = NotificationDeliveryError(channel, event.recipient_id, reason)
        report.errors.append(error)
        metrics.inc("notifications.failed", channel=channel)
        logger.warning("%s", error, exc_info=exc_info)

    # Inbox
    def list_notifications(self, member_id: str, tenant_id: Optional[str] = None) -> List[Notification]:
        flt = {"member_id": member_id}
        if tenant_id:
            flt["church_id"] = tenant_id
        rows = self._db.query("notifications", flt, order=[("created_at", False)])
        return [Notification.from_row(r) for r in rows]

    def get_notification(self, notification_id: str) -> Notification:
        rows = self._db.query("notifications", {"id": notification_id})
        if not rows:
            raise NotFoundError(f"Notification {notification_id} not found")
        return Notification.from_row(rows[0])

    def mark_read(self, notification_id: str) -> Notification:
        return Notification.from_row(self._db.update("notifications", notification_id, {"read": True}))
