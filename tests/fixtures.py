import uuid

from authz.context import OpsContext
from ministry.demands import DemandLifecycleManager
from ministry.schedules import ScheduleAssignmentManager
from notify.dispatcher import NotificationDispatcher
from notify.mailer import ResendMailSender
from state.repository import GLOBAL_DB
from state.seed import DEV_CHURCH_ID, reset_db_state, load_dev_seed, snapshot_hash


def reset_and_seed():
    """Reset global DB and load deterministic seed.
    Returns the snapshot hash for convenience in tests.
    """
    reset_db_state()
    load_dev_seed()
    return snapshot_hash()


def make_ctx(actor_id: str = "mem_leader_worship", role: str | None = "lider_ministerio", tenant_id: str = DEV_CHURCH_ID) -> OpsContext:
    return OpsContext(correlation_id=uuid.uuid4().hex, tenant_id=tenant_id, actor_id=actor_id, actor_role=role)


def make_managers(db=None, mailer=None):
    """Dispatcher plus both managers wired to one store."""
    db = db or GLOBAL_DB
    dispatcher = NotificationDispatcher(db, mailer or ResendMailSender())
    return dispatcher, DemandLifecycleManager(db, dispatcher), ScheduleAssignmentManager(db, dispatcher)


class RecordingDispatcher(NotificationDispatcher):
    """Real dispatcher that also keeps every event it was handed."""

    def __init__(self, db=None, mailer=None):
        super().__init__(db or GLOBAL_DB, mailer or ResendMailSender())
        self.events = []

    def dispatch(self, ctx, event):
        self.events.append(event)
        return super().dispatch(ctx, event)
