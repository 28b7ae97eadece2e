"""Administrative endpoints: optimization, sweeps, retention and backups."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field
import structlog

from ..dependencies.services import WarehouseDep

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


# --- Models ---


class PolicyUpdate(BaseModel):
    retention_period_days: Optional[int] = Field(None, ge=0)
    archive_after_days: Optional[int] = Field(None, ge=0)
    compression_level: Optional[str] = None
    purge_after_days: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


# --- Endpoints ---


@router.post("/optimize", response_model=Dict[str, Any])
async def run_optimization(warehouse: WarehouseDep):
    """Run one optimization cycle; 409 while another is running."""
    summary = await warehouse.run_optimization_cycle()
    return summary.to_dict()


@router.post("/sweeps/{sweep}", response_model=Dict[str, Any])
async def run_sweep(sweep: str, warehouse: WarehouseDep):
    """Run the archival, compression or purge sweep now."""
    runners = {
        "archival": warehouse.run_archival_sweep,
        "compression": warehouse.run_compression_sweep,
        "purge": warehouse.run_purge_sweep,
    }
    runner = runners.get(sweep)
    if runner is None:
        raise HTTPException(status_code=404, detail=f"Unknown sweep: {sweep}")

    summary = await runner()
    return summary.to_dict()


@router.get("/retention", response_model=List[Dict[str, Any]])
async def list_policies(warehouse: WarehouseDep):
    return [policy.to_dict() for policy in warehouse.retention_policies()]


@router.patch("/retention/{data_type}", response_model=Dict[str, Any])
async def update_policy(data_type: str, update: PolicyUpdate, warehouse: WarehouseDep):
    """Change fields of a retention policy; invariants are re-checked."""
    changes = update.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No policy fields provided")

    policy = warehouse.update_policy(data_type, **changes)
    return policy.to_dict()


@router.post("/backups", response_model=Dict[str, Any])
async def create_backup(warehouse: WarehouseDep):
    info = await warehouse.create_backup()
    return info.to_dict()


@router.get("/backups", response_model=List[Dict[str, Any]])
async def list_backups(warehouse: WarehouseDep):
    return [info.to_dict() for info in await warehouse.list_backups()]


@router.post("/backups/{backup_id}/restore", response_model=Dict[str, Any])
async def restore_backup(backup_id: str, warehouse: WarehouseDep):
    """Rebuild aggregates from a backup's raw samples."""
    result = await warehouse.restore_from_backup(backup_id)
    return result.to_dict()
