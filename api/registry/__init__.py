"""Punk registry API endpoints."""

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from errors import ServiceError, ValidationError
from ..main import Services, get_services, internal_http_error, service_http_error

# Create router
router = APIRouter(
    prefix="/registry",
    tags=["Registry"]
)

class TrackEntry(BaseModel):
    """One minted punk to register."""
    tokenId: str
    minter: Optional[str] = None
    depositReference: Optional[str] = None

class TrackRequest(BaseModel):
    """Request model for tracking mints.

    Either a single tokenId or a batch of entries.
    """
    tokenId: Optional[str] = None
    minter: Optional[str] = None
    depositReference: Optional[str] = None
    entries: Optional[List[TrackEntry]] = None

@router.get("/supply")
async def get_supply(services: Services = Depends(get_services)):
    """Get the canonical minted count."""
    try:
        return await services.registry.supply()
    except ServiceError as e:
        raise service_http_error(e)
    except Exception as e:
        raise internal_http_error('supply', e)

@router.get("/list")
async def list_members(services: Services = Depends(get_services)):
    """Get every official punk id in mint order."""
    try:
        return await services.registry.list_members()
    except ServiceError as e:
        raise service_http_error(e)
    except Exception as e:
        raise internal_http_error('registry list', e)

@router.get("/official/{token_id}")
async def get_official(token_id: str, services: Services = Depends(get_services)):
    """Check whether a punk is official."""
    try:
        return await services.registry.official_info(token_id)
    except ServiceError as e:
        raise service_http_error(e)
    except Exception as e:
        raise internal_http_error('official', e)

@router.post("/track")
async def track_mints(request: TrackRequest, services: Services = Depends(get_services)):
    """Append minted punks to the durable registry."""
    try:
        if request.entries:
            return await services.registry.track_batch([e.model_dump() for e in request.entries])
        if request.tokenId is None:
            raise ValidationError("Provide tokenId or entries")
        return await services.registry.track(request.tokenId, request.minter, request.depositReference)
    except ServiceError as e:
        raise service_http_error(e)
    except Exception as e:
        raise internal_http_error('track', e)
