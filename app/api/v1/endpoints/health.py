# app/api/v1/endpoints/health.py
from typing import Optional

from fastapi import APIRouter, Depends

from app.api import deps
from app.core.seed import SeedData
from app.scheduler import get_scheduler_status

router = APIRouter(tags=["Health"])


@router.get("/health")
def health(seed: Optional[SeedData] = Depends(deps.get_seed)):
    """Liveness check. Also reports the fairness seed this process is using."""
    return {
        "status": "ok",
        "seed": seed.seed if seed else None,
        "coefficients": {
            "a": seed.coefficients.a,
            "b": seed.coefficients.b,
            "c": seed.coefficients.c,
        } if seed else None,
        "scheduler": get_scheduler_status()["status"],
    }
