"""Security operations routes (admin key required)."""

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from snapsecure_api.container import SecurityContainer
from snapsecure_api.routes.deps import get_container, require_admin

router = APIRouter(prefix="/security", tags=["security"], dependencies=[Depends(require_admin)])


class LockdownRequest(BaseModel):
    """Lockdown request."""

    reason: str


@router.get("/chain")
def chain_stats(container: SecurityContainer = Depends(get_container)):
    """Ledger statistics."""
    return container.audit.get_chain_stats().to_dict()


@router.get("/verify/{tx_hash}")
def verify_entry(tx_hash: str, container: SecurityContainer = Depends(get_container)):
    """Verify one ledger entry."""
    return {"tx_hash": tx_hash, "valid": container.ledger.verify(tx_hash)}


@router.post("/verify")
def verify_ledger(container: SecurityContainer = Depends(get_container)):
    """Full integrity scan."""
    return container.ledger.verify_all().to_dict()


@router.get("/dashboard")
def dashboard(container: SecurityContainer = Depends(get_container)):
    """Security dashboard counters."""
    return container.firewall.dashboard()


@router.post("/lockdown", status_code=status.HTTP_202_ACCEPTED)
def lockdown(body: LockdownRequest, container: SecurityContainer = Depends(get_container)):
    """Activate emergency lockdown."""
    tx_hash = container.firewall.emergency_lockdown(body.reason)
    return {"lockdown": True, "tx_hash": tx_hash}


@router.delete("/lockdown")
def lift_lockdown(container: SecurityContainer = Depends(get_container)):
    """Lift emergency lockdown."""
    tx_hash = container.firewall.lift_lockdown()
    if tx_hash is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="No lockdown active")
    return {"lockdown": False, "tx_hash": tx_hash}
