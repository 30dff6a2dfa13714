"""REST API routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from app.api.auth import Caller, require_agent, require_mentor
from app.container import Services
from app.errors import NotFound, require_fields
from core.models.signal import DEFAULT_EA_ID, TradeSignal
from core.models.student import Student

logger = logging.getLogger(__name__)

router = APIRouter()


def get_services(request: Request) -> Services:
    return request.app.state.services


# Request models. Required fields are optional here so that the services
# can report every missing field at once.
class MentorRegisterRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    mentor_id: Optional[str] = None


class LicenseGenerateRequest(BaseModel):
    ea_id: str = DEFAULT_EA_ID
    user_id: Optional[str] = None


class LicenseKeyRequest(BaseModel):
    license_key: Optional[str] = None


class SignalRequest(BaseModel):
    """Signal posted by a mentor's EA. ``type`` is the legacy name of ``direction``."""

    ea_id: Optional[str] = None
    type: Optional[str] = None
    direction: Optional[str] = None
    symbol: Optional[str] = None
    entry_price: Optional[float] = None
    sl: Optional[float] = None
    tp: Optional[float] = None
    lot_size: Optional[float] = None
    comment: Optional[str] = None


class StudentRegisterRequest(BaseModel):
    license_key: Optional[str] = None
    account_number: Optional[int | str] = None
    password: Optional[str] = None
    server: Optional[str] = None
    broker: Optional[str] = None


class HeartbeatRequest(BaseModel):
    license_key: Optional[str] = None
    connected: Optional[bool] = None


def _signal_payload(signal: TradeSignal) -> dict:
    return signal.model_dump(mode="json")


def _student_payload(student: Student) -> dict:
    return student.model_dump(mode="json", exclude={"account_ref"})


# ============================
# Mentors
# ============================

@router.post("/mentor/register")
async def register_mentor(body: MentorRegisterRequest, services: Services = Depends(get_services)):
    """Register a mentor; repeated emails return the existing id."""
    registration = await services.mentors.register(body.name, body.email, body.mentor_id)
    response = {"success": True, "mentor_id": registration.mentor_id}
    if registration.already_registered:
        response["already_registered"] = True
    return response


@router.get("/mentor/verify")
async def verify_mentor(
    caller: Caller = Depends(require_mentor),
    services: Services = Depends(get_services),
):
    """Confirm the caller's mentor identity."""
    mentor = services.mentors.get(caller.mentor_id)
    response = {"success": True, "mentor_id": caller.mentor_id}
    if mentor is not None:
        response["name"] = mentor.name
        response["email"] = mentor.email
    return response


# ============================
# Licenses
# ============================

@router.post("/license/generate")
async def generate_license(
    body: LicenseGenerateRequest,
    caller: Caller = Depends(require_mentor),
    services: Services = Depends(get_services),
):
    license = await services.licenses.issue(
        caller.mentor_id, body.ea_id.strip() or DEFAULT_EA_ID, body.user_id
    )
    return {"success": True, "license": license.model_dump(mode="json")}


@router.get("/license/validate/{license_key}")
async def validate_license(license_key: str, services: Services = Depends(get_services)):
    """Public license check. Always 200; ``valid`` carries the verdict."""
    result = services.licenses.validate(license_key)
    response = {"success": True, "valid": result.valid, "reason": result.reason.value}
    if result.license is not None:
        response["license"] = {
            "key": result.license.key,
            "mentor_id": result.license.mentor_id,
            "ea_id": result.license.ea_id,
            "active": result.license.active,
        }
    return response


@router.post("/license/deactivate")
async def deactivate_license(
    body: LicenseKeyRequest,
    caller: Caller = Depends(require_mentor),
    services: Services = Depends(get_services),
):
    require_fields(license_key=body.license_key)
    license = await services.licenses.deactivate(caller.mentor_id, body.license_key)
    return {"success": True, "license_key": license.key, "active": license.active}


@router.get("/licenses")
async def list_licenses(
    caller: Caller = Depends(require_mentor),
    services: Services = Depends(get_services),
):
    licenses = services.licenses.list_for_mentor(caller.mentor_id)
    return {
        "success": True,
        "licenses": [lic.model_dump(mode="json") for lic in licenses],
    }


# ============================
# Signals
# ============================

@router.post("/receiveSignal")
async def receive_signal(
    body: SignalRequest,
    caller: Caller = Depends(require_mentor),
    services: Services = Depends(get_services),
):
    """Ingest a signal, broadcast it and start copying it to students."""
    signal = await services.signals.ingest(
        mentor_id=caller.mentor_id,
        ea_id=body.ea_id,
        direction=body.direction or body.type,
        symbol=body.symbol,
        sl=body.sl,
        tp=body.tp,
        entry_price=body.entry_price,
        size=body.lot_size,
        comment=body.comment,
    )
    delivered = await services.subscribers.send_signal(signal)

    copy_targets = 0
    if services.copier.schedule(signal) is not None:
        copy_targets = len(services.copier.targets_for(signal))

    return {
        "success": True,
        "signal_id": signal.id,
        "mentor_id": signal.mentor_id,
        "broadcasted": True,
        "delivered": delivered,
        "copy_targets": copy_targets,
    }


@router.get("/signals")
async def get_signals(
    limit: Optional[int] = Query(None, ge=1, description="Maximum signals to return"),
    services: Services = Depends(get_services),
):
    """Signal history, newest first."""
    signals = services.signals.recent(limit)
    return {"success": True, "signals": [_signal_payload(s) for s in signals]}


@router.get("/signals/ea/{ea_id}")
async def get_signals_by_ea(ea_id: str, services: Services = Depends(get_services)):
    signals = services.signals.by_ea(ea_id)
    return {"success": True, "signals": [_signal_payload(s) for s in signals]}


# ============================
# Students
# ============================

@router.post("/student/register")
async def register_student(body: StudentRegisterRequest, services: Services = Depends(get_services)):
    """Enroll a license against a trading account (the license is the credential)."""
    student = await services.students.register(
        license_key=body.license_key,
        account_number=None if body.account_number is None else str(body.account_number),
        password=body.password,
        server=body.server,
        broker=body.broker,
    )
    return {
        "success": True,
        "license_key": student.license_key,
        "status": student.status.value,
        "mt5_connected": student.account_ref is not None,
    }


@router.post("/student/start")
async def start_student(body: LicenseKeyRequest, services: Services = Depends(get_services)):
    student = await services.students.start(body.license_key)
    return {"success": True, "license_key": student.license_key, "status": student.status.value}


@router.post("/student/stop")
async def stop_student(body: LicenseKeyRequest, services: Services = Depends(get_services)):
    student = await services.students.stop(body.license_key)
    return {"success": True, "license_key": student.license_key, "status": student.status.value}


@router.get("/student/status/{license_key}")
async def student_status(license_key: str, services: Services = Depends(get_services)):
    view = services.students.status(license_key)
    return {"success": True, **view.model_dump(mode="json")}


# ============================
# VPS agent
# ============================

@router.get("/vps/students/active")
async def active_students(
    mentor_id: Optional[str] = Query(None, description="Filter by mentor"),
    caller: Caller = Depends(require_agent),
    services: Services = Depends(get_services),
):
    """Students whose terminals the agent should keep running."""
    students = services.students.active_students(mentor_id)
    return {
        "success": True,
        "students": [
            {**_student_payload(s), "connected": services.students.is_connected(s)}
            for s in students
        ],
    }


@router.post("/vps/heartbeat")
async def heartbeat(
    body: HeartbeatRequest,
    caller: Caller = Depends(require_agent),
    services: Services = Depends(get_services),
):
    require_fields(license_key=body.license_key, connected=body.connected)
    view = await services.students.report_heartbeat(body.license_key, body.connected)
    return {"success": True, "license_key": view.license_key, "connected": view.connected}


@router.get("/vps/signals")
async def poll_signals(
    since: Optional[str] = Query(None, description="Return signals newer than this id"),
    ea_id: Optional[str] = Query(None, description="Filter by EA"),
    caller: Caller = Depends(require_agent),
    services: Services = Depends(get_services),
):
    """Agent polling: signals newer than ``since``, oldest first."""
    signals = services.signals.since(since, ea_id)
    last_id = signals[-1].id if signals else since
    return {
        "success": True,
        "signals": [_signal_payload(s) for s in signals],
        "last_id": last_id,
    }


@router.get("/vps/students/{license_key}")
async def agent_student(
    license_key: str,
    caller: Caller = Depends(require_agent),
    services: Services = Depends(get_services),
):
    student = services.students.get(license_key)
    if student is None:
        raise NotFound("student_not_found", "No student registered for this license")
    return {
        "success": True,
        "student": {**_student_payload(student), "connected": services.students.is_connected(student)},
    }
