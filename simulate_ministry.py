#!/usr/bin/env python3
"""Walk a demand and a service roster through their lifecycle and show the audit log"""
import sys
import uuid
sys.path.insert(0, 'src')

from authz.context import OpsContext
from authz.engine import can
from ministry.demands import DemandLifecycleManager
from ministry.schedules import ScheduleAssignmentManager
from notify.dispatcher import NotificationDispatcher
from notify.mailer import MailResult
from state.errors import ConflictError
from state.repository import GLOBAL_DB
from state.seed import reset_db_state, load_dev_seed


class PrintingMailer:
    """Prints instead of calling Resend."""

    def send(self, to, subject, html):
        print(f"  [mail] to={to} subject={subject!r}")
        return MailResult(ok=True, message_id="local")


reset_db_state()
load_dev_seed()

dispatcher = NotificationDispatcher(GLOBAL_DB, PrintingMailer())
demands = DemandLifecycleManager(GLOBAL_DB, dispatcher)
schedules = ScheduleAssignmentManager(GLOBAL_DB, dispatcher)

leader = OpsContext(
    correlation_id=uuid.uuid4().hex,
    tenant_id="church_dev",
    actor_id="mem_leader_worship",
    actor_role="lider_ministerio",
)
volunteer = OpsContext(
    correlation_id=uuid.uuid4().hex,
    tenant_id="church_dev",
    actor_id="vol_003",
    actor_role="voluntario",
)

print("=" * 60)
print("PERMISSIONS")
print("=" * 60)
for ctx in (leader, volunteer):
    allowed, reason = can(ctx.actor_role, "ministries")
    print(f"{ctx.actor_id} ({ctx.actor_role}): ministries -> {reason}")
print()

print("=" * 60)
print("DEMAND")
print("=" * 60)
demand = demands.create_demand(
    leader,
    "min_worship",
    "Print chord charts",
    responsible_id="vol_003",
    deadline="2025-01-11",
    priority="high",
)
demands.update_status(volunteer, demand.id, "in_progress")
demands.update_status(volunteer, demand.id, "done")
for status, items in demands.board("min_worship").items():
    print(f"{status}: {[d.title for d in items]}")
print()

print("=" * 60)
print("ROSTER")
print("=" * 60)
schedule = schedules.create_schedule(leader, "church_dev", "min_worship", "2025-02-09", event_id="evt_sunday_06")
first = schedules.assign_volunteer(leader, schedule.id, "vol_003")
schedules.assign_volunteer(leader, schedule.id, "vol_006")
try:
    schedules.assign_volunteer(leader, schedule.id, "vol_006")
except ConflictError as e:
    print(f"Conflict: {e}")
schedules.remove_volunteer(leader, first.id)
schedules.assign_volunteer(leader, schedule.id, "vol_003")
for s in schedules.list_schedules("min_worship", "church_dev"):
    names = [a.member["name"] if a.member else a.member_id for a in s.assignments]
    print(f"{s.service_date} [{s.status}] {names}")
if leader.warnings:
    print("Warnings:")
    for w in leader.warnings:
        print(f"  - {w}")
print()

print("=" * 60)
print("EVENT LOG")
print("=" * 60)
for entry in GLOBAL_DB.list_events():
    print(f"{entry.timestamp.isoformat()} {entry.kind:<24} {entry.entity} {entry.data}")
