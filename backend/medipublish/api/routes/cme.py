# backend/medipublish/api/routes/cme.py

from typing import List, Optional

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from medipublish.api.deps import get_audit_trail, get_current_actor, get_export_store
from medipublish.database import get_db
from medipublish.errors import (
    AttemptsExhausted,
    GradingConfigurationError,
    MediPublishError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from medipublish.schemas.cme import (
    ActivityCreated,
    ActivityDraft,
    ActivitySummary,
    CompletionRequest,
    CompletionResponse,
    ExportOut,
    ExportRequest,
    RequirementCheck,
    Transcript,
)
from medipublish.services.audit import AuditTrail
from medipublish.services.authoring import Actor, create_activity, publish_activity
from medipublish.services.catalog import activity_summary, list_activities
from medipublish.services.completion import submit_completion
from medipublish.services.export import FileExportStore, export_transcript, get_export
from medipublish.services.requirements import check_requirements
from medipublish.services.transcript import get_transcript

logger = logging.getLogger(__name__)

router = APIRouter(tags=["cme"])


def _http_error(exc: MediPublishError) -> HTTPException:
    """Map core errors onto status codes."""
    if isinstance(exc, ValidationError):
        detail = {"error": exc.message, "details": exc.details} if exc.details else exc.message
        return HTTPException(status_code=400, detail=detail)
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, PermissionDeniedError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, AttemptsExhausted):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, GradingConfigurationError):
        logger.error("[CME_API] Grading configuration error: %s", exc)
        return HTTPException(status_code=500, detail="CME activity is misconfigured")
    logger.error("[CME_API] %s: %s", type(exc).__name__, exc)
    return HTTPException(status_code=500, detail="Internal server error")


# -----------------------------
# Catalog & authoring
# -----------------------------
@router.get("/activities", response_model=List[ActivitySummary])
def get_activities(
    specialty: Optional[str] = Query(None, description="Specialty or target-audience tag"),
    credit_type: Optional[str] = Query(None, alias="creditType"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> List[ActivitySummary]:
    try:
        activities = list_activities(
            db,
            specialty=specialty or None,
            credit_type=credit_type or None,
            limit=limit,
            offset=offset,
        )
    except MediPublishError as exc:
        raise _http_error(exc)
    return [activity_summary(a) for a in activities]


@router.post("/activities", response_model=ActivityCreated)
def post_activity(
    payload: ActivityDraft,
    actor: Actor = Depends(get_current_actor),
    audit: AuditTrail = Depends(get_audit_trail),
    db: Session = Depends(get_db),
) -> ActivityCreated:
    try:
        activity = create_activity(db, actor, payload, audit=audit)
    except MediPublishError as exc:
        raise _http_error(exc)
    return ActivityCreated(
        id=activity.id,
        status=activity.status,
        message="CME activity created successfully and submitted for review",
    )


@router.post("/activities/{activity_id}/publish", response_model=ActivitySummary)
def post_publish(
    activity_id: int,
    actor: Actor = Depends(get_current_actor),
    audit: AuditTrail = Depends(get_audit_trail),
    db: Session = Depends(get_db),
) -> ActivitySummary:
    try:
        activity = publish_activity(db, activity_id, actor, audit=audit)
    except MediPublishError as exc:
        raise _http_error(exc)
    return activity_summary(activity)


# -----------------------------
# Completion
# -----------------------------
@router.post("/complete", response_model=CompletionResponse)
def post_complete(
    payload: CompletionRequest,
    actor: Actor = Depends(get_current_actor),
    audit: AuditTrail = Depends(get_audit_trail),
    db: Session = Depends(get_db),
) -> CompletionResponse:
    try:
        return submit_completion(
            db,
            actor.user_id,
            payload.activity_id,
            payload.answers,
            payload.time_spent,
            audit=audit,
        )
    except MediPublishError as exc:
        raise _http_error(exc)


# -----------------------------
# Transcript, requirements, export
# -----------------------------
@router.get("/transcript", response_model=Transcript)
def read_transcript(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> Transcript:
    try:
        return get_transcript(db, actor.user_id)
    except MediPublishError as exc:
        raise _http_error(exc)


@router.get("/requirements", response_model=RequirementCheck)
def read_requirements(
    specialty: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> RequirementCheck:
    try:
        return check_requirements(db, actor.user_id, specialty or "")
    except MediPublishError as exc:
        raise _http_error(exc)


@router.post("/export", response_model=ExportOut)
def post_export(
    payload: ExportRequest,
    actor: Actor = Depends(get_current_actor),
    store: FileExportStore = Depends(get_export_store),
    db: Session = Depends(get_db),
) -> ExportOut:
    try:
        return export_transcript(
            db,
            actor.user_id,
            payload.format,
            payload.state_board,
            store=store,
        )
    except MediPublishError as exc:
        raise _http_error(exc)


@router.get("/exports/{export_id}")
def download_export(
    export_id: str,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    try:
        export = get_export(db, export_id, actor.user_id)
    except MediPublishError as exc:
        raise _http_error(exc)
    return FileResponse(
        export.file_path,
        media_type=export.content_type,
        filename=f"cme-transcript-{export.id}.{export.format.lower()}",
    )
