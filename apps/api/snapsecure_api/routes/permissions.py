"""Device permission routes."""

from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from snapsecure_api.container import SecurityContainer
from snapsecure_api.routes.deps import client_ip, current_user_id, get_container

router = APIRouter(prefix="/permissions", tags=["permissions"])

PermissionType = Literal["CAMERA", "MICROPHONE", "GALLERY"]


class PermissionRequest(BaseModel):
    """Permission request body."""

    reason: str
    metadata: Optional[dict] = None


class PermissionResponse(BaseModel):
    """Permission decision."""

    granted: bool
    message: str


@router.get("")
def list_permissions(
    user_id: int = Depends(current_user_id),
    container: SecurityContainer = Depends(get_container),
):
    """List the caller's permissions."""
    return {"permissions": container.permissions.list_for_user(user_id)}


@router.post("/{permission_type}", response_model=PermissionResponse)
def request_permission(
    permission_type: PermissionType,
    body: PermissionRequest,
    request: Request,
    user_id: int = Depends(current_user_id),
    container: SecurityContainer = Depends(get_container),
):
    """Request a device permission."""
    decision = container.permissions.request(
        user_id,
        permission_type,
        body.reason,
        metadata=body.metadata,
        ip_address=client_ip(request),
    )
    if not decision.allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=decision.reason or "Permission denied for security reasons",
        )
    return PermissionResponse(granted=True, message=f"{permission_type} permission granted")


@router.delete("/{permission_type}", status_code=status.HTTP_204_NO_CONTENT)
def revoke_permission(
    permission_type: PermissionType,
    user_id: int = Depends(current_user_id),
    container: SecurityContainer = Depends(get_container),
):
    """Revoke a device permission."""
    container.permissions.revoke(user_id, permission_type)
