import pytest

from notify.mailer import MailResult, ResendMailSender
from observability import metrics
from state.seed import reset_db_state


class MailRecorder:
    """Stands in for the Resend call: records outgoing mail, can be told to fail."""

    def __init__(self):
        self.sent: list[dict] = []
        self.fail_with: str | None = None

    def __call__(self, sender, to: str, subject: str, html: str) -> MailResult:
        if self.fail_with:
            return MailResult(ok=False, reason=self.fail_with)
        self.sent.append({"to": to, "subject": subject, "html": html})
        return MailResult(ok=True, message_id=f"msg_{len(self.sent)}")

    def recipients(self) -> list[str]:
        return [m["to"] for m in self.sent]


@pytest.fixture(autouse=True)
def clean_state():
    """Every test starts from an empty store and zeroed counters."""
    reset_db_state()
    metrics.reset()
    yield
    reset_db_state()


@pytest.fixture(autouse=True)
def stub_mail(monkeypatch, request):
    """Replace the Resend HTTP call with a deterministic recorder.

    Tests marked ``real_mailer`` exercise the HTTP path against httpx.MockTransport.
    """
    recorder = MailRecorder()
    monkeypatch.setenv("RESEND_API_KEY", "test-key")
    if request.node.get_closest_marker("real_mailer") is None:
        monkeypatch.setattr(ResendMailSender, "send", lambda self, to, subject, html: recorder(self, to, subject, html))
    yield recorder
