from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from taskflow.apps.api.deps import Services, get_services
from taskflow.apps.api.response import SuccessEnvelope, success_response


router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    cached_connections: int


# Allow unwrapped responses on /health while /v1/health is enveloped.
@router.get("/health", response_model=SuccessEnvelope[HealthResponse] | HealthResponse)
async def health(request: Request, services: Services = Depends(get_services)) -> dict:
    payload = HealthResponse(status="ok", cached_connections=services.cache.stats()["entries"])
    return success_response(request=request, data=payload)
