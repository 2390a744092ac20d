"""
Routes des signalements de code expiré
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from inclass.database import get_db
from inclass.models.user import User
from inclass.routers.auth import get_current_faculty, get_current_student
from inclass.schemas.attendance import (
    ExpiredCodeReportCreate, ExpiredCodeReportResponse, ReportDecision
)
from inclass.services import report_service

router = APIRouter(prefix="/reports", tags=["Signalements"])


@router.post("/expired-code", response_model=ExpiredCodeReportResponse, status_code=status.HTTP_201_CREATED)
async def report_expired_code(
    body: ExpiredCodeReportCreate,
    current_user: User = Depends(get_current_student),
    db: AsyncSession = Depends(get_db),
):
    return await report_service.create_report(db, current_user.id, body.session_id, body.reason)


@router.get("/expired-codes", response_model=List[ExpiredCodeReportResponse])
async def list_expired_code_reports(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    current_user: User = Depends(get_current_faculty),
    db: AsyncSession = Depends(get_db),
):
    return await report_service.list_reports(db, current_user.id, status_filter)


@router.post("/expired-code/{report_id}/approve", response_model=ExpiredCodeReportResponse)
async def approve_report(
    report_id: int,
    body: ReportDecision,
    current_user: User = Depends(get_current_faculty),
    db: AsyncSession = Depends(get_db),
):
    """Approuver: la présence est saisie manuellement"""
    return await report_service.approve_report(db, report_id, current_user.id, body.response)


@router.post("/expired-code/{report_id}/reject", response_model=ExpiredCodeReportResponse)
async def reject_report(
    report_id: int,
    body: ReportDecision,
    current_user: User = Depends(get_current_faculty),
    db: AsyncSession = Depends(get_db),
):
    return await report_service.reject_report(db, report_id, current_user.id, body.response)
