from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends

from shield.app.api.dependencies import CleanupDep, HeuristicsDep
from shield.app.middleware.auth import require_admin

router = APIRouter(
    prefix="/admin/security",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)


@router.get("/status")
async def security_status(heuristics: HeuristicsDep) -> dict[str, Any]:
    """Counts of active blacklist entries, recent failures and lapsed rows."""
    status = await heuristics.security_status()
    return asdict(status)


@router.post("/cleanup")
async def run_cleanup(cleanup: CleanupDep, reset_rate_limits: bool = False) -> dict[str, Any]:
    """Run the ledger sweep now instead of waiting for the next interval."""
    report = await cleanup.run_once(reset_rate_limits=reset_rate_limits)
    return asdict(report)
