from __future__ import annotations
from typing import Dict, List, Optional, Any
import logging
from authz.context import OpsContext
from notify.dispatcher import NotificationDispatcher, NotificationEvent
from observability import metrics
from state.errors import NotFoundError, ValidationError
from state.event_log import log
from state.models import DEMAND_STATUSES, Demand, new_id, parse_iso_date, parse_priority

logger = logging.getLogger("ministry.demands")

MY_MINISTRY_LINK = "/dashboard?module=my-ministry"


def _entity(demand_id: str) -> str:
    return f"Demand:{demand_id}"


def _board_key(demand: Demand):
    # prioritised demands first (highest first, oldest first on ties); the rest keep insertion order
    if demand.priority is not None:
        return (0, -demand.priority, demand.created_at)
    return (1, 0, "")


class DemandLifecycleManager:
    """Ministry demands: creation, assignment and the pending/in_progress/done lifecycle.

    Every transition among the three statuses is accepted, reopening a done
    demand included. Only the target value is validated.
    """

    def __init__(self, db, dispatcher: NotificationDispatcher):
        self._db = db
        self._dispatcher = dispatcher

    # ── Commands ──

    def create_demand(
        self,
        ctx: OpsContext,
        ministry_id: str,
        title: str,
        *,
        description: Optional[str] = None,
        event_id: Optional[str] = None,
        responsible_id: Optional[str] = None,
        deadline: Any = None,
        priority: Any = None,
    ) -> Demand:
        if not ministry_id:
            raise ValidationError("ministry_id is required")
        if not title or not title.strip():
            raise ValidationError("title is required")
        deadline_iso = parse_iso_date(deadline, "deadline")
        priority_value = parse_priority(priority)
        # soft reference: checked here once, never again
        if event_id and not self._db.query("events", {"id": event_id}, projection=["id"]):
            raise ValidationError(f"Service event {event_id} does not exist")

        demand = Demand(
            id=new_id(),
            ministry_id=ministry_id,
            title=title.strip(),
            status="pending",
            event_id=event_id or None,
            responsible_id=responsible_id or None,
            description=description,
            deadline=deadline_iso,
            priority=priority_value,
        )
        demand = Demand.from_row(self._db.insert("demands", demand.to_row()))
        metrics.inc("demands.created")
        log(
            self._db,
            "demand_created",
            ctx,
            _entity(demand.id),
            {"ministry_id": ministry_id, "responsible_id": demand.responsible_id, "event_id": demand.event_id},
        )
        if demand.responsible_id:
            self._notify_assigned(ctx, demand)
        return demand

    def assign_demand(self, ctx: OpsContext, demand_id: str, responsible_id: Optional[str]) -> Demand:
        """Set or change the responsible party, whatever the status. ``None`` clears it."""
        current = self.get_demand(demand_id)
        demand = Demand.from_row(
            self._db.update("demands", demand_id, {"responsible_id": responsible_id or None})
        )
        log(
            self._db,
            "demand_assigned",
            ctx,
            _entity(demand_id),
            {"from": current.responsible_id, "to": demand.responsible_id},
        )
        if demand.responsible_id:
            self._notify_assigned(ctx, demand)
        return demand

    def update_status(self, ctx: OpsContext, demand_id: str, status: str) -> Demand:
        if status not in DEMAND_STATUSES:
            raise ValidationError(
                f"Unknown demand status {status!r}; expected one of {', '.join(DEMAND_STATUSES)}"
            )
        current = self.get_demand(demand_id)
        demand = Demand.from_row(self._db.update("demands", demand_id, {"status": status}))
        metrics.inc("demands.status_changed", status=status)
        log(self._db, "demand_status_changed", ctx, _entity(demand_id), {"from": current.status, "to": status})
        return demand

    def delete_demand(self, ctx: OpsContext, demand_id: str) -> None:
        self._db.delete("demands", demand_id)
        log(self._db, "demand_deleted", ctx, _entity(demand_id), {})

    # ── Queries ──

    def get_demand(self, demand_id: str) -> Demand:
        rows = self._db.query("demands", {"id": demand_id})
        if not rows:
            raise NotFoundError(f"Demand {demand_id} not found")
        return Demand.from_row(rows[0])

    def list_demands(self, ministry_id: str) -> List[Demand]:
        rows = self._db.query("demands", {"ministry_id": ministry_id}, order=[("created_at", True)])
        return [Demand.from_row(r) for r in rows]

    def board(self, ministry_id: str) -> Dict[str, List[Demand]]:
        """Kanban columns keyed by status."""
        columns: Dict[str, List[Demand]] = {status: [] for status in DEMAND_STATUSES}
        for demand in self.list_demands(ministry_id):
            if demand.status not in columns:
                logger.warning("Demand %s has unknown status %r; left off the board", demand.id, demand.status)
                continue
            columns[demand.status].append(demand)
        return {status: sorted(items, key=_board_key) for status, items in columns.items()}

    # ── Notifications ──

    def _notify_assigned(self, ctx: OpsContext, demand: Demand):
        description = demand.title
        if demand.deadline:
            description += f" (due {demand.deadline})"
        self._dispatcher.dispatch(
            ctx,
            NotificationEvent(
                recipient_id=demand.responsible_id,
                title="A demand was assigned to you",
                description=description,
                link=MY_MINISTRY_LINK,
                type="demand",
            ),
        )
