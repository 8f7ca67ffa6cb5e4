"""Mint authorization API endpoint."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from errors import ServiceError
from ..main import Services, get_services, internal_http_error, service_http_error

# Create router
router = APIRouter(
    prefix="/mint",
    tags=["Mint"]
)

class AuthorizeRequest(BaseModel):
    """Request model for a mint co-signature."""
    tokenId: str
    identity: str
    claimedSupply: int

@router.post("/authorize")
async def authorize_mint(request: AuthorizeRequest, services: Services = Depends(get_services)):
    """Co-sign a mint if supply and the caller's allowance permit."""
    try:
        return services.mint_gate.authorize(request.tokenId, request.identity, request.claimedSupply)
    except ServiceError as e:
        raise service_http_error(e)
    except Exception as e:
        raise internal_http_error('mint authorize', e)
