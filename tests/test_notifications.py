import json

import httpx
import pytest

from notify.dispatcher import NotificationDispatcher, NotificationEvent
from notify.mailer import RESEND_ENDPOINT, ResendMailSender
from notify.templates import absolute_link, render_standard_email
from observability import metrics
from state.errors import NotFoundError, StoreUnavailableError
from state.repository import GLOBAL_DB
from tests.fixtures import make_ctx, make_managers, reset_and_seed


def _event(recipient="vol_001"):
    return NotificationEvent(
        recipient_id=recipient,
        title="You have been scheduled to serve",
        description="Ministry Worship on 05/01/2025.",
        link="/dashboard?module=my-ministry",
        type="schedule",
    )


def test_dispatch_creates_in_app_and_email(stub_mail):
    reset_and_seed()
    dispatcher, _, _ = make_managers()
    ctx = make_ctx()
    report = dispatcher.dispatch(ctx, _event())
    assert report.ok
    assert report.email_sent
    row = GLOBAL_DB.query("notifications", {"id": report.notification_id})[0]
    assert row["church_id"] == "church_dev"
    assert row["read"] is False
    mail = stub_mail.sent[0]
    assert mail["subject"] == "[Connect Vida Church] You have been scheduled to serve"
    assert "Ministry Worship on 05/01/2025." in mail["html"]
    assert ctx.warnings == []


def test_email_failure_does_not_fail_the_operation(stub_mail):
    reset_and_seed()
    _, _, schedules = make_managers()
    stub_mail.fail_with = "resend_http_500:boom"
    ctx = make_ctx()
    assignment = schedules.assign_volunteer(ctx, "esc_worship_04", "vol_011")
    assert assignment.member_id == "vol_011"
    assert len(GLOBAL_DB.query("notifications", {"member_id": "vol_011"})) == 1
    assert ctx.warnings == ["Email notification to volunteer011@connectvida.example could not be sent."]
    assert metrics.get("notifications.failed", channel="email") == 1


def test_in_app_failure_is_only_logged(monkeypatch, stub_mail):
    reset_and_seed()
    dispatcher, _, _ = make_managers()

    def broken_insert(collection, record):
        raise StoreUnavailableError("down")

    monkeypatch.setattr(GLOBAL_DB, "insert", broken_insert)
    ctx = make_ctx()
    report = dispatcher.dispatch(ctx, _event())
    assert report.notification_id is None
    assert [e.channel for e in report.errors] == ["in_app"]
    assert report.email_sent
    assert ctx.warnings == []


def test_mailer_raising_is_contained():
    reset_and_seed()

    class ExplodingMailer:
        def send(self, to, subject, html):
            raise RuntimeError("socket closed")

    dispatcher = NotificationDispatcher(GLOBAL_DB, ExplodingMailer())
    ctx = make_ctx()
    report = dispatcher.dispatch(ctx, _event())
    assert not report.ok
    assert report.notification_id is not None
    assert len(ctx.warnings) == 1


def test_inbox_and_mark_read():
    reset_and_seed()
    dispatcher, _, _ = make_managers()
    ctx = make_ctx()
    first = dispatcher.dispatch(ctx, _event("vol_002")).notification_id
    second = dispatcher.dispatch(ctx, _event("vol_002")).notification_id
    inbox = dispatcher.list_notifications("vol_002", "church_dev")
    assert {n.id for n in inbox} == {first, second}
    assert dispatcher.mark_read(first).read is True
    assert dispatcher.get_notification(first).read is True
    with pytest.raises(NotFoundError):
        dispatcher.mark_read("missing")
    assert dispatcher.list_notifications("vol_002", "other_church") == []


def test_default_church_name_when_tenant_unknown(stub_mail):
    reset_and_seed()
    dispatcher, _, _ = make_managers()
    dispatcher.dispatch(make_ctx(tenant_id="unknown_church"), _event())
    assert stub_mail.sent[0]["subject"].startswith("[Ministry Ops]")


# ---- Resend sender ----

@pytest.mark.real_mailer
def test_resend_sender_posts_payload():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "re_123"})

    sender = ResendMailSender(api_key="k", sender="Church <no-reply@example.com>", transport=httpx.MockTransport(handler))
    result = sender.send("a@example.com", "Hello", "<p>hi</p>")
    assert result.ok
    assert result.message_id == "re_123"
    assert seen["url"] == RESEND_ENDPOINT
    assert seen["auth"] == "Bearer k"
    assert seen["body"] == {"from": "Church <no-reply@example.com>", "to": ["a@example.com"], "subject": "Hello", "html": "<p>hi</p>"}


@pytest.mark.real_mailer
def test_resend_sender_reports_http_errors():
    transport = httpx.MockTransport(lambda request: httpx.Response(422, text="invalid from"))
    result = ResendMailSender(api_key="k", transport=transport).send("a@example.com", "Hello", "<p>hi</p>")
    assert not result.ok
    assert result.reason.startswith("resend_http_422")


@pytest.mark.real_mailer
def test_resend_sender_reports_transport_errors():
    def handler(request):
        raise httpx.ConnectError("no route", request=request)

    result = ResendMailSender(api_key="k", transport=httpx.MockTransport(handler)).send("a@example.com", "Hi", "<p>x</p>")
    assert not result.ok
    assert result.reason.startswith("resend_call_failed")


@pytest.mark.real_mailer
def test_resend_sender_requires_key_and_fields(monkeypatch):
    monkeypatch.delenv("RESEND_API_KEY", raising=False)
    assert ResendMailSender().send("a@example.com", "Hi", "<p>x</p>").reason == "RESEND_API_KEY not set"
    assert ResendMailSender(api_key="k").send("", "Hi", "<p>x</p>").reason.startswith("missing_fields")


# ---- Templates ----

def test_absolute_link(monkeypatch):
    monkeypatch.setenv("APP_BASE_URL", "https://app.example.com/")
    assert absolute_link("/dashboard") == "https://app.example.com/dashboard"
    assert absolute_link("https://other.example.com/x") == "https://other.example.com/x"
    assert absolute_link(None) is None
    assert absolute_link("/dashboard", base_url="") == "/dashboard"


def test_render_escapes_content():
    html = render_standard_email("<b>Title</b>", "line one\nline two", "St. Mark's", "demand", "/x", base_url="https://a.b")
    assert "&lt;b&gt;Title&lt;/b&gt;" in html
    assert "line one<br>line two" in html
    assert 'href="https://a.b/x"' in html
    assert '<div class="tag">demand</div>' in html
    assert "St. Mark&#x27;s" in html
