from __future__ import annotations
import os
import uuid
import logging
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from typing import Any
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from dotenv import load_dotenv
from authz.catalog import CATALOG
from authz.context import OpsContext
from authz.engine import can, parse_role, resolve_capabilities
from ministry.demands import DemandLifecycleManager
from ministry.schedules import ScheduleAssignmentManager
from notify.dispatcher import NotificationDispatcher
from notify.mailer import ResendMailSender
from observability import metrics
from state.errors import (
    ConflictError,
    ConstraintViolationError,
    NotFoundError,
    OpsError,
    StoreUnavailableError,
    ValidationError,
)
from state.seed import load_dev_seed
from state.repository import GLOBAL_DB

app = FastAPI(title="Ministry Ops")
logger = logging.getLogger("api")

load_dotenv()
# Development seed (idempotent); MINISTRY_OPS_SEED=0 starts empty
if os.getenv("MINISTRY_OPS_SEED", "1").lower() not in ("0", "false", "no"):
    load_dev_seed()

DISPATCHER = NotificationDispatcher(GLOBAL_DB, ResendMailSender())
DEMANDS = DemandLifecycleManager(GLOBAL_DB, DISPATCHER)
SCHEDULES = ScheduleAssignmentManager(GLOBAL_DB, DISPATCHER)

ERROR_STATUS = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (ConstraintViolationError, 409),
    (StoreUnavailableError, 503),
)


@app.exception_handler(OpsError)
def ops_error_handler(request: Request, exc: OpsError):
    status = next((code for kind, code in ERROR_STATUS if isinstance(exc, kind)), 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    metrics.inc("api.errors", code=exc.code)
    return JSONResponse(status_code=status, content={"error": exc.code, "detail": str(exc)})


def ops_context(
    x_user_id: str | None = Header(None),
    x_user_role: str | None = Header(None),
    x_church_id: str | None = Header(None),
    x_request_id: str | None = Header(None),
) -> OpsContext:
    if not x_user_id or not x_church_id:
        raise HTTPException(status_code=401, detail="X-User-Id and X-Church-Id headers are required")
    return OpsContext(
        correlation_id=x_request_id or uuid.uuid4().hex,
        tenant_id=x_church_id,
        actor_id=x_user_id,
        actor_role=x_user_role,
    )


def _require(ctx: OpsContext, capability: str):
    allowed, reason = can(ctx.actor_role, capability)
    if not allowed:
        metrics.inc("api.forbidden", capability=capability)
        raise HTTPException(status_code=403, detail=reason)


def _owns_ministry(ctx: OpsContext, ministry_id: str) -> bool:
    return bool(GLOBAL_DB.query("ministries", {"id": ministry_id, "church_id": ctx.tenant_id}, projection=["id"]))


def _ministry_in_tenant(ctx: OpsContext, ministry_id: str):
    if not _owns_ministry(ctx, ministry_id):
        raise NotFoundError(f"Ministry {ministry_id} not found")


# Records of another church look missing
def _demand_in_tenant(ctx: OpsContext, demand_id: str):
    demand = DEMANDS.get_demand(demand_id)
    if not _owns_ministry(ctx, demand.ministry_id):
        raise NotFoundError(f"Demand {demand_id} not found")
    return demand


def _schedule_in_tenant(ctx: OpsContext, schedule_id: str):
    schedule = SCHEDULES.get_schedule(schedule_id)
    if schedule.church_id != ctx.tenant_id:
        raise NotFoundError(f"Schedule {schedule_id} not found")
    return schedule


def _assignment_in_tenant(ctx: OpsContext, assignment_id: str):
    assignment = SCHEDULES.get_assignment(assignment_id)
    if assignment.church_id != ctx.tenant_id:
        raise NotFoundError(f"Assignment {assignment_id} not found")
    return assignment


def _jsonable(value: Any) -> Any:
    if is_dataclass(value):
        return asdict(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _ok(ctx: OpsContext, data: Any) -> dict:
    return {"correlation_id": ctx.correlation_id, "data": _jsonable(data), "warnings": list(ctx.warnings)}


@app.get("/health")
def health():
    return {"ok": True, "time": datetime.now(timezone.utc).isoformat(), "store": type(GLOBAL_DB).__name__}


# ---- Capabilities ----

@app.get("/capabilities")
def list_capabilities():
    return {"capabilities": [asdict(c) for c in CATALOG.all()]}


@app.get("/roles/{role}/capabilities")
def role_capabilities(role: str):
    parsed = parse_role(role)
    return {
        "role": role,
        "known": parsed is not None,
        "capabilities": sorted(resolve_capabilities(role)),
    }


@app.get("/me/capabilities")
def my_capabilities(ctx: OpsContext = Depends(ops_context)):
    return _ok(ctx, {"role": ctx.actor_role, "capabilities": sorted(ctx.capabilities())})


# ---- Demands ----

class DemandCreate(BaseModel):
    title: str
    description: str | None = None
    event_id: str | None = None
    responsible_id: str | None = None
    deadline: str | None = None
    priority: int | str | None = None


class DemandStatusUpdate(BaseModel):
    status: str


class DemandAssign(BaseModel):
    responsible_id: str | None = None


@app.post("/ministries/{ministry_id}/demands", status_code=201)
def create_demand(ministry_id: str, body: DemandCreate, ctx: OpsContext = Depends(ops_context)):
    _require(ctx, "ministries")
    _ministry_in_tenant(ctx, ministry_id)
    demand = DEMANDS.create_demand(
        ctx,
        ministry_id,
        body.title,
        description=body.description,
        event_id=body.event_id,
        responsible_id=body.responsible_id,
        deadline=body.deadline,
        priority=body.priority,
    )
    return _ok(ctx, demand)


@app.get("/ministries/{ministry_id}/demands")
def list_demands(ministry_id: str, ctx: OpsContext = Depends(ops_context)):
    _ministry_in_tenant(ctx, ministry_id)
    return _ok(ctx, DEMANDS.list_demands(ministry_id))


@app.get("/ministries/{ministry_id}/demands/board")
def demand_board(ministry_id: str, ctx: OpsContext = Depends(ops_context)):
    _ministry_in_tenant(ctx, ministry_id)
    return _ok(ctx, DEMANDS.board(ministry_id))


@app.patch("/demands/{demand_id}/status")
def update_demand_status(demand_id: str, body: DemandStatusUpdate, ctx: OpsContext = Depends(ops_context)):
    _require(ctx, "ministries")
    _demand_in_tenant(ctx, demand_id)
    return _ok(ctx, DEMANDS.update_status(ctx, demand_id, body.status))


@app.post("/demands/{demand_id}/assign")
def assign_demand(demand_id: str, body: DemandAssign, ctx: OpsContext = Depends(ops_context)):
    _require(ctx, "ministries")
    _demand_in_tenant(ctx, demand_id)
    return _ok(ctx, DEMANDS.assign_demand(ctx, demand_id, body.responsible_id))


@app.delete("/demands/{demand_id}")
def delete_demand(demand_id: str, ctx: OpsContext = Depends(ops_context)):
    _require(ctx, "ministries")
    _demand_in_tenant(ctx, demand_id)
    DEMANDS.delete_demand(ctx, demand_id)
    return _ok(ctx, {"deleted": demand_id})


# ---- Schedules ----

class ScheduleCreate(BaseModel):
    service_date: str
    event_id: str | None = None
    notes: str | None = None


class VolunteerAssign(BaseModel):
    volunteer_id: str = Field(min_length=1)


class AssignmentConfirmation(BaseModel):
    confirmed: bool


class ScheduleStatusUpdate(BaseModel):
    status: str


@app.post("/ministries/{ministry_id}/schedules", status_code=201)
def create_schedule(ministry_id: str, body: ScheduleCreate, ctx: OpsContext = Depends(ops_context)):
    _require(ctx, "ministries")
    _ministry_in_tenant(ctx, ministry_id)
    schedule = SCHEDULES.create_schedule(
        ctx, ctx.tenant_id, ministry_id, body.service_date, event_id=body.event_id, notes=body.notes
    )
    return _ok(ctx, schedule)


@app.get("/ministries/{ministry_id}/schedules")
def list_schedules(ministry_id: str, ctx: OpsContext = Depends(ops_context)):
    _ministry_in_tenant(ctx, ministry_id)
    return _ok(ctx, SCHEDULES.list_schedules(ministry_id, ctx.tenant_id))


@app.post("/schedules/{schedule_id}/volunteers", status_code=201)
def assign_volunteer(schedule_id: str, body: VolunteerAssign, ctx: OpsContext = Depends(ops_context)):
    _require(ctx, "ministries")
    _schedule_in_tenant(ctx, schedule_id)
    return _ok(ctx, SCHEDULES.assign_volunteer(ctx, schedule_id, body.volunteer_id))


@app.delete("/assignments/{assignment_id}")
def remove_volunteer(assignment_id: str, ctx: OpsContext = Depends(ops_context)):
    _require(ctx, "ministries")
    _assignment_in_tenant(ctx, assignment_id)
    SCHEDULES.remove_volunteer(ctx, assignment_id)
    return _ok(ctx, {"deleted": assignment_id})


@app.post("/assignments/{assignment_id}/confirmation")
def confirm_assignment(assignment_id: str, body: AssignmentConfirmation, ctx: OpsContext = Depends(ops_context)):
    assignment = _assignment_in_tenant(ctx, assignment_id)
    if assignment.member_id != ctx.actor_id:
        raise HTTPException(status_code=403, detail="Only the scheduled volunteer can answer this assignment")
    return _ok(ctx, SCHEDULES.confirm_assignment(ctx, assignment_id, body.confirmed))


@app.patch("/schedules/{schedule_id}/status")
def update_schedule_status(schedule_id: str, body: ScheduleStatusUpdate, ctx: OpsContext = Depends(ops_context)):
    _require(ctx, "ministries")
    _schedule_in_tenant(ctx, schedule_id)
    return _ok(ctx, SCHEDULES.update_schedule_status(ctx, schedule_id, body.status))


@app.post("/schedules/{schedule_id}/publish")
def publish_schedule(schedule_id: str, ctx: OpsContext = Depends(ops_context)):
    _require(ctx, "ministries")
    _schedule_in_tenant(ctx, schedule_id)
    return _ok(ctx, SCHEDULES.publish_schedule(ctx, schedule_id))


@app.delete("/schedules/{schedule_id}")
def delete_schedule(schedule_id: str, ctx: OpsContext = Depends(ops_context)):
    _require(ctx, "ministries")
    _schedule_in_tenant(ctx, schedule_id)
    SCHEDULES.delete_schedule(ctx, schedule_id)
    return _ok(ctx, {"deleted": schedule_id})


@app.get("/me/schedules")
def my_schedules(ctx: OpsContext = Depends(ops_context)):
    return _ok(ctx, SCHEDULES.list_member_schedules(ctx.actor_id, ctx.tenant_id))


# ---- Notifications ----

@app.get("/me/notifications")
def my_notifications(ctx: OpsContext = Depends(ops_context)):
    return _ok(ctx, DISPATCHER.list_notifications(ctx.actor_id, ctx.tenant_id))


@app.post("/notifications/{notification_id}/read")
def mark_notification_read(notification_id: str, ctx: OpsContext = Depends(ops_context)):
    notification = DISPATCHER.get_notification(notification_id)
    if notification.member_id != ctx.actor_id:
        # other people's inbox looks empty
        raise NotFoundError(f"Notification {notification_id} not found")
    return _ok(ctx, DISPATCHER.mark_read(notification_id))
