# backend/medipublish/api/deps.py

from typing import Optional

from fastapi import Header, HTTPException, Request

from medipublish.services.audit import AuditTrail
from medipublish.services.authoring import Actor
from medipublish.services.export import FileExportStore


def get_current_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: str = Header("USER"),
    x_user_verified: bool = Header(False),
) -> Actor:
    """
    Identity handed over by the upstream auth layer.

    Session handling happens before requests reach this service; here we
    only read the user id, role and creator verification it forwards.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return Actor(user_id=x_user_id.strip(), role=x_user_role, verified=x_user_verified)


def get_audit_trail(request: Request) -> AuditTrail:
    return request.app.state.audit_trail


def get_export_store(request: Request) -> FileExportStore:
    return request.app.state.export_store
