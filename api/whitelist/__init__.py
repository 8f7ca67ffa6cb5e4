"""Whitelist API endpoints."""

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from errors import ServiceError
from ..main import Services, get_services, internal_http_error, service_http_error

# Create router
router = APIRouter(
    prefix="/whitelist",
    tags=["Whitelist"]
)

class SubmitRequest(BaseModel):
    """Request model for submitting recovered punk ids."""
    punkIds: List[str]
    submitter: Optional[str] = None

@router.post("/submit")
async def submit_whitelist(request: SubmitRequest, services: Services = Depends(get_services)):
    """Add punk ids to the whitelist."""
    try:
        return await services.registry.submit_whitelist(request.punkIds, request.submitter)
    except ServiceError as e:
        raise service_http_error(e)
    except Exception as e:
        raise internal_http_error('whitelist submit', e)

@router.get("/list")
async def list_whitelist(services: Services = Depends(get_services)):
    """List whitelist entries."""
    try:
        return await services.registry.whitelist()
    except ServiceError as e:
        raise service_http_error(e)
    except Exception as e:
        raise internal_http_error('whitelist list', e)
