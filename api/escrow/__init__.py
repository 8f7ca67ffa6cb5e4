"""Escrow marketplace API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from errors import ServiceError
from ..main import Services, get_services, internal_http_error, service_http_error

# Create router
router = APIRouter(
    prefix="/escrow",
    tags=["Escrow"]
)

class ListRequest(BaseModel):
    """Request model for creating a listing."""
    tokenId: str
    seller: str
    sellerPayoutAddress: str
    price: int
    depositReference: Optional[str] = None
    metadata: Optional[str] = None

class BuyRequest(BaseModel):
    """Request model for registering a buyer."""
    tokenId: str
    buyer: str
    buyerPayoutAddress: str

class ExecuteRequest(BaseModel):
    """Request model for executing a swap."""
    tokenId: str
    buyer: str

class CancelRequest(BaseModel):
    """Request model for cancelling a listing."""
    tokenId: str
    seller: str

class DepositRequest(BaseModel):
    """Request model for recording a seller deposit."""
    tokenId: str
    depositReference: Optional[str] = None

@router.post("/list")
async def create_listing(request: ListRequest, services: Services = Depends(get_services)):
    """Create a pending listing and return deposit instructions."""
    try:
        return await services.engine.list(
            token_id=request.tokenId,
            seller=request.seller,
            seller_payout_address=request.sellerPayoutAddress,
            price=request.price,
            deposit_reference=request.depositReference,
            metadata=request.metadata
        )
    except ServiceError as e:
        raise service_http_error(e)
    except Exception as e:
        raise internal_http_error('list', e)

@router.post("/buy")
async def register_buyer(request: BuyRequest, services: Services = Depends(get_services)):
    """Register the buyer for a listing and quote the payment."""
    try:
        return await services.engine.register_buyer(
            token_id=request.tokenId,
            buyer=request.buyer,
            buyer_payout_address=request.buyerPayoutAddress
        )
    except ServiceError as e:
        raise service_http_error(e)
    except Exception as e:
        raise internal_http_error('buy', e)

@router.post("/execute")
async def execute_swap(request: ExecuteRequest, services: Services = Depends(get_services)):
    """Execute the swap once the deposit and payment are in escrow."""
    try:
        return await services.engine.execute(request.tokenId, request.buyer)
    except ServiceError as e:
        raise service_http_error(e)
    except Exception as e:
        raise internal_http_error('execute', e)

@router.post("/cancel")
async def cancel_listing(request: CancelRequest, services: Services = Depends(get_services)):
    """Cancel a listing, refunding a deposited collateral coin."""
    try:
        return await services.engine.cancel(request.tokenId, request.seller)
    except ServiceError as e:
        raise service_http_error(e)
    except Exception as e:
        raise internal_http_error('cancel', e)

@router.post("/deposit")
async def record_deposit(request: DepositRequest, services: Services = Depends(get_services)):
    """Record the seller's deposit, optionally with the actual outpoint."""
    try:
        listing = await services.engine.record_deposit(request.tokenId, request.depositReference)
        return {'success': True, 'tokenId': listing.token_id, 'status': listing.status,
                'listing': listing.to_dict()}
    except ServiceError as e:
        raise service_http_error(e)
    except Exception as e:
        raise internal_http_error('deposit', e)

@router.get("/status")
async def get_status(
    tokenId: Optional[str] = Query(None, description="Token id; omit for all active listings"),
    services: Services = Depends(get_services)
):
    """Get one listing or every active listing."""
    try:
        return await services.engine.status(tokenId)
    except ServiceError as e:
        raise service_http_error(e)
    except Exception as e:
        raise internal_http_error('status', e)

@router.get("/sales")
async def get_sales(services: Services = Depends(get_services)):
    """Get completed sales and market stats."""
    try:
        return await services.engine.sales()
    except ServiceError as e:
        raise service_http_error(e)
    except Exception as e:
        raise internal_http_error('sales', e)

@router.get("/info")
async def get_info(services: Services = Depends(get_services)):
    """Get the escrow address, public key and network."""
    return services.engine.escrow_info()

@router.get("/audit")
async def audit_coins(services: Services = Depends(get_services)):
    """Match escrow coins against listings."""
    try:
        return await services.engine.audit_escrow_coins()
    except ServiceError as e:
        raise service_http_error(e)
    except Exception as e:
        raise internal_http_error('audit', e)

@router.post("/process")
async def process_deposits(services: Services = Depends(get_services)):
    """Run one deposit monitor pass."""
    try:
        result = await services.monitor.process_once()
        return {'success': True, **result}
    except Exception as e:
        raise internal_http_error('process', e)
