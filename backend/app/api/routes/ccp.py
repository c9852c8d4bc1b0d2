"""Critical Control Point API routes: CCPs, checks and service lockdown."""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, status

from app.core.rate_limit import limiter
from app.core.rbac import CurrentUser, RequireManager
from app.db.session import DbSession
from app.schemas.compliance import CCPCheckCreate, CCPCreate
from app.services.ccp_lockdown_service import (
    CCPLockdownService,
    InvalidReadingError,
    is_menu_item_blocked,
    serialize_ccp,
    serialize_check,
    serialize_status,
)
from app.services.record_store import RecordNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/points")
@limiter.limit("60/minute")
def list_ccps(request: Request, db: DbSession, current_user: CurrentUser):
    """Active Critical Control Points."""
    return [serialize_ccp(c) for c in CCPLockdownService(db).get_active_ccps()]


@router.post("/points", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_ccp(request: Request, body: CCPCreate, db: DbSession, current_user: RequireManager):
    """Create a Critical Control Point."""
    data = body.model_dump()
    try:
        ccp = CCPLockdownService(db).create_ccp(**data)
    except InvalidReadingError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return serialize_ccp(ccp)


@router.post("/points/{ccp_id}/deactivate")
@limiter.limit("30/minute")
def deactivate_ccp(request: Request, ccp_id: int, db: DbSession, current_user: RequireManager):
    try:
        ccp = CCPLockdownService(db).deactivate_ccp(ccp_id)
    except RecordNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="CCP not found")
    return serialize_ccp(ccp)


@router.get("/checks")
@limiter.limit("60/minute")
def list_checks(
    request: Request,
    db: DbSession,
    current_user: CurrentUser,
    check_date: Optional[date] = Query(None, description="Defaults to today"),
):
    """CCP checks recorded on a day."""
    return [serialize_check(c) for c in CCPLockdownService(db).get_checks_for_date(check_date)]


@router.post("/checks", status_code=status.HTTP_201_CREATED)
@limiter.limit("60/minute")
def record_check(request: Request, body: CCPCheckCreate, db: DbSession, current_user: CurrentUser):
    """Record a CCP check. A failed check locks service for today."""
    service = CCPLockdownService(db)
    try:
        check = service.record_check(
            ccp_id=body.ccp_id,
            recorded_value=body.recorded_value,
            staff_email=current_user.email,
            staff_name=current_user.full_name,
            notes=body.notes,
        )
    except RecordNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="CCP not found")
    except InvalidReadingError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    lockdown = service.get_lockdown_status()
    return {"check": serialize_check(check), "lockdown": serialize_status(lockdown)}


@router.get("/lockdown")
@limiter.limit("120/minute")
def get_lockdown(request: Request, db: DbSession, current_user: CurrentUser):
    """Today's lockdown state, evaluated from freshly fetched records."""
    return serialize_status(CCPLockdownService(db).get_lockdown_status())


@router.get("/menu-items/{menu_item}/status")
@limiter.limit("120/minute")
def get_menu_item_status(request: Request, menu_item: str, db: DbSession, current_user: CurrentUser):
    """Whether a menu item is blocked by a failed CCP today."""
    lockdown = CCPLockdownService(db).get_lockdown_status()
    blocked = is_menu_item_blocked(menu_item, lockdown)
    return {
        "menu_item": menu_item,
        "blocked": blocked,
        "reason": "Critical control point failed today" if blocked else None,
    }
