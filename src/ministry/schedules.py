from __future__ import annotations
from datetime import date
from typing import Any, Dict, List, Optional
import logging
from authz.context import OpsContext
from notify.dispatcher import NotificationDispatcher, NotificationEvent
from observability import metrics
from state.errors import ConflictError, ConstraintViolationError, NotFoundError, OpsError, ValidationError
from state.event_log import log
from state.models import (
    SCHEDULE_STATUSES,
    Assignment,
    Schedule,
    new_id,
    now_iso,
    parse_iso_date,
)

logger = logging.getLogger("ministry.schedules")

MY_MINISTRY_LINK = "/dashboard?module=my-ministry"


def _entity(schedule_id: str) -> str:
    return f"Schedule:{schedule_id}"


def _display_date(iso: str) -> str:
    return date.fromisoformat(iso[:10]).strftime("%d/%m/%Y")


class ScheduleAssignmentManager:
    """Service rosters and the volunteers assigned to them.

    A volunteer appears at most once per schedule. The check runs here and
    the store's unique (schedule_id, member_id) constraint settles races;
    both surface as ConflictError. Ministry membership is the caller's call.
    """

    def __init__(self, db, dispatcher: NotificationDispatcher):
        self._db = db
        self._dispatcher = dispatcher

    # ── Commands ──

    def create_schedule(
        self,
        ctx: OpsContext,
        tenant_id: str,
        ministry_id: str,
        service_date: Any,
        *,
        event_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Schedule:
        """Create a draft roster. Nobody is notified until it is published."""
        if not tenant_id:
            raise ValidationError("tenant_id is required")
        if not ministry_id:
            raise ValidationError("ministry_id is required")
        service_iso = parse_iso_date(service_date, "service_date")
        if service_iso is None:
            raise ValidationError("service_date is required")

        schedule = Schedule(
            id=new_id(),
            church_id=tenant_id,
            ministry_id=ministry_id,
            service_date=service_iso,
            event_id=event_id or None,
            notes=notes,
            status="draft",
        )
        schedule = Schedule.from_row(self._db.insert("schedules", schedule.to_row()))
        metrics.inc("schedules.created")
        log(self._db, "schedule_created", ctx, _entity(schedule.id), {"ministry_id": ministry_id, "service_date": service_iso})
        return schedule

    def assign_volunteer(self, ctx: OpsContext, schedule_id: str, volunteer_id: str) -> Assignment:
        if not volunteer_id:
            raise ValidationError("volunteer_id is required")
        schedule = self.get_schedule(schedule_id)
        if self._db.query("schedule_assignments", {"schedule_id": schedule_id, "member_id": volunteer_id}, projection=["id"]):
            raise ConflictError(f"Volunteer {volunteer_id} is already on schedule {schedule_id}")

        assignment = Assignment(
            id=new_id(),
            schedule_id=schedule_id,
            member_id=volunteer_id,
            church_id=schedule.church_id,
        )
        try:
            row = self._db.insert("schedule_assignments", assignment.to_row())
        except ConstraintViolationError as exc:
            raise ConflictError(f"Volunteer {volunteer_id} is already on schedule {schedule_id}") from exc
        assignment = Assignment.from_row(row)
        metrics.inc("schedules.volunteer_assigned")
        log(self._db, "volunteer_assigned", ctx, _entity(schedule_id), {"member_id": volunteer_id, "assignment_id": assignment.id})
        self._notify_scheduled(ctx, schedule, volunteer_id)
        return assignment

    def remove_volunteer(self, ctx: OpsContext, assignment_id: str) -> None:
        """Delete an assignment. A missing assignment raises NotFoundError."""
        current = self.get_assignment(assignment_id)
        self._db.delete("schedule_assignments", assignment_id)
        metrics.inc("schedules.volunteer_removed")
        log(
            self._db,
            "volunteer_removed",
            ctx,
            _entity(current.schedule_id),
            {"member_id": current.member_id, "assignment_id": assignment_id},
        )

    def confirm_assignment(self, ctx: OpsContext, assignment_id: str, confirmed: bool) -> Assignment:
        self.get_assignment(assignment_id)
        status = "confirmed" if confirmed else "declined"
        assignment = Assignment.from_row(
            self._db.update("schedule_assignments", assignment_id, {"confirmation_status": status})
        )
        log(
            self._db,
            "assignment_confirmation",
            ctx,
            _entity(assignment.schedule_id),
            {"assignment_id": assignment_id, "status": status},
        )
        return assignment

    def update_schedule_status(self, ctx: OpsContext, schedule_id: str, status: str) -> Schedule:
        if status not in SCHEDULE_STATUSES:
            raise ValidationError(
                f"Unknown schedule status {status!r}; expected one of {', '.join(SCHEDULE_STATUSES)}"
            )
        current = self.get_schedule(schedule_id)
        schedule = Schedule.from_row(
            self._db.update("schedules", schedule_id, {"status": status, "updated_at": now_iso()})
        )
        log(self._db, "schedule_status_changed", ctx, _entity(schedule_id), {"from": current.status, "to": status})
        return schedule

    def publish_schedule(self, ctx: OpsContext, schedule_id: str) -> Schedule:
        """Mark the roster published and tell everyone on it."""
        schedule = self.update_schedule_status(ctx, schedule_id, "published")
        assignments = self._assignments_for([schedule_id]).get(schedule_id, [])
        for assignment in assignments:
            self._notify_scheduled(ctx, schedule, assignment.member_id)
        metrics.inc("schedules.published")
        log(self._db, "schedule_published", ctx, _entity(schedule_id), {"notified": len(assignments)})
        schedule.assignments = assignments
        return schedule

    def delete_schedule(self, ctx: OpsContext, schedule_id: str) -> None:
        """Delete the roster. The store removes its assignments in the same step."""
        self.get_schedule(schedule_id)
        assignments = self._db.query("schedule_assignments", {"schedule_id": schedule_id}, projection=["id"])
        self._db.delete("schedules", schedule_id)
        log(self._db, "schedule_deleted", ctx, _entity(schedule_id), {"assignments_removed": len(assignments)})

    # ── Queries ──

    def get_schedule(self, schedule_id: str) -> Schedule:
        rows = self._db.query("schedules", {"id": schedule_id})
        if not rows:
            raise NotFoundError(f"Schedule {schedule_id} not found")
        return Schedule.from_row(rows[0])

    def get_assignment(self, assignment_id: str) -> Assignment:
        rows = self._db.query("schedule_assignments", {"id": assignment_id})
        if not rows:
            raise NotFoundError(f"Assignment {assignment_id} not found")
        return Assignment.from_row(rows[0])

    def list_schedules(self, ministry_id: str, tenant_id: str) -> List[Schedule]:
        """Rosters by service date ascending (ties by id) with volunteers and event joined in."""
        rows = self._db.query(
            "schedules",
            {"ministry_id": ministry_id, "church_id": tenant_id},
            order=[("service_date", True), ("id", True)],
        )
        schedules = [Schedule.from_row(r) for r in rows]
        self._hydrate(schedules)
        return schedules

    def list_member_schedules(self, member_id: str, tenant_id: str) -> List[Dict[str, Any]]:
        """Schedules a volunteer is on, with their own confirmation status."""
        mine = self._db.query("schedule_assignments", {"member_id": member_id, "church_id": tenant_id})
        if not mine:
            return []
        by_schedule = {row["schedule_id"]: Assignment.from_row(row) for row in mine}
        rows = self._db.query(
            "schedules",
            {"id": list(by_schedule)},
            order=[("service_date", True), ("id", True)],
        )
        schedules = [Schedule.from_row(r) for r in rows]
        self._hydrate(schedules)
        out: List[Dict[str, Any]] = []
        for schedule in schedules:
            mine_here = by_schedule[schedule.id]
            out.append({
                "schedule": schedule,
                "assignment_id": mine_here.id,
                "confirmation_status": mine_here.confirmation_status,
            })
        return out

    def _assignments_for(self, schedule_ids: List[str]) -> Dict[str, List[Assignment]]:
        if not schedule_ids:
            return {}
        rows = self._db.query(
            "schedule_assignments",
            {"schedule_id": schedule_ids},
            order=[("created_at", True)],
        )
        assignments = [Assignment.from_row(r) for r in rows]
        member_ids = sorted({a.member_id for a in assignments})
        members = {
            m["id"]: m
            for m in self._db.query("members", {"id": member_ids}, projection=["id", "name", "email"])
        } if member_ids else {}
        grouped: Dict[str, List[Assignment]] = {}
        for a in assignments:
            # soft reference: a deleted member leaves member=None
            a.member = members.get(a.member_id)
            grouped.setdefault(a.schedule_id, []).append(a)
        return grouped

    def _hydrate(self, schedules: List[Schedule]):
        grouped = self._assignments_for([s.id for s in schedules])
        event_ids = sorted({s.event_id for s in schedules if s.event_id})
        events = {
            e["id"]: e
            for e in self._db.query("events", {"id": event_ids}, projection=["id", "name", "starts_at"])
        } if event_ids else {}
        for s in schedules:
            s.assignments = grouped.get(s.id, [])
            if s.event_id:
                s.event = events.get(s.event_id)

    # ── Notifications ──

    def _notify_scheduled(self, ctx: OpsContext, schedule: Schedule, member_id: str):
        try:
            ministry = self._db.query("ministries", {"id": schedule.ministry_id}, projection=["name"])
        except OpsError:
            logger.warning("Ministry lookup failed for schedule %s", schedule.id, exc_info=True)
            ministry = []
        ministry_name = ministry[0]["name"] if ministry else schedule.ministry_id
        self._dispatcher.dispatch(
            ctx,
            NotificationEvent(
                recipient_id=member_id,
                title="You have been scheduled to serve",
                description=f"Ministry {ministry_name} on {_display_date(schedule.service_date)}.",
                link=MY_MINISTRY_LINK,
                type="schedule",
            ),
        )
