"""FastAPI route: village directory (public)."""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from backend.app.api.deps import get_storage
from backend.app.storage.repository import AlertStorage

router = APIRouter(prefix="/api/v1/villages", tags=["villages"])


@router.get("")
async def list_villages(storage: AlertStorage = Depends(get_storage)) -> List[Dict[str, Any]]:
    villages = await storage.list_villages()
    return [v.to_dict() for v in villages]
