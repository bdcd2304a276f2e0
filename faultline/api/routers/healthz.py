# faultline/api/routers/healthz.py
from fastapi import APIRouter

from faultline.schemas.common import OkResponse

router = APIRouter(prefix="/healthz", tags=["health"])


@router.get("", response_model=OkResponse, summary="Liveness check")
async def healthz():
    return {"ok": True}
