import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from broadcast import RelayPool
from documents import DocumentStore, create_document_store
from errors import ServiceError
from escrow import EscrowEngine, OwnershipLedger
from listings import ListingStore
from mint import MintGate, MintRateLimiter
from monitor import DepositMonitor
from registry import RegistryCache, RegistryService
from signing import SigningError, SigningKey
from wallet import EscrowWallet, create_wallet

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

@dataclass
class Services:
    """Everything the routers need, built once per process."""
    settings: Dict[str, Any]
    documents: DocumentStore
    wallet: EscrowWallet
    relays: RelayPool
    listings: ListingStore
    engine: EscrowEngine
    registry: RegistryService
    mint_gate: MintGate
    monitor: DepositMonitor

def _load_key(settings: Dict[str, Any], name: str) -> Optional[SigningKey]:
    """Load an optional signing key from settings."""
    if not settings.get(name):
        logger.warning(f"{name} not configured; features that sign with it are disabled")
        return None
    try:
        return SigningKey(settings[name])
    except SigningError as e:
        logger.error(f"Invalid {name}: {e}")
        raise

def build_services(
    settings: Dict[str, Any],
    documents: Optional[DocumentStore] = None,
    wallet: Optional[EscrowWallet] = None,
    relays: Optional[RelayPool] = None
) -> Services:
    """Wire adapters and components from settings.

    Adapters can be passed in to replace the configured ones.
    """
    documents = documents or create_document_store(settings)
    wallet = wallet or create_wallet(settings)
    relays = relays or RelayPool(settings['relays'], timeout=settings['broadcast_timeout'])

    escrow_key = _load_key(settings, 'escrow_private_key')
    service_key = _load_key(settings, 'service_private_key')

    listings = ListingStore(documents)
    engine = EscrowEngine(
        listings,
        wallet,
        relays,
        OwnershipLedger(documents),
        escrow_address=settings['escrow_address'],
        network=settings['network'],
        escrow_key=escrow_key,
        fee_basis_points=settings['fee_basis_points'],
        collateral_min_amount=settings['collateral_min_amount'],
        collateral_max_amount=settings['collateral_max_amount']
    )
    registry = RegistryService(
        documents,
        relays,
        service_public_key=service_key.public_key_hex if service_key else None,
        network=settings['network'],
        max_supply=settings['max_supply'],
        legacy_whitelist=settings['legacy_whitelist'],
        cache=RegistryCache(ttl_ms=settings['registry_cache_seconds'] * 1000)
    )
    mint_gate = MintGate(
        service_key,
        MintRateLimiter(settings['mint_cap_per_identity'], settings['mint_window_seconds']),
        max_supply=settings['max_supply']
    )
    monitor = DepositMonitor(
        engine,
        interval=settings['deposit_poll_interval'],
        auto_execute=settings['auto_execute'],
        retention_ms=settings['listing_retention_days'] * 24 * 60 * 60 * 1000
    )
    return Services(settings, documents, wallet, relays, listings, engine, registry, mint_gate, monitor)

def service_http_error(e: ServiceError) -> HTTPException:
    """Map a service error onto an HTTPException with a kind and detail."""
    return HTTPException(status_code=e.status_code, detail=e.to_dict())

def internal_http_error(operation: str, e: Exception) -> HTTPException:
    """Log an unexpected failure and hide its internals from the caller."""
    logger.exception(f"Unexpected error in {operation}: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={'kind': 'internal', 'detail': f"{operation} failed unexpectedly"}
    )

def get_services(request: Request) -> Services:
    """FastAPI dependency returning the app's services."""
    return request.app.state.services

def create_app(services: Services) -> FastAPI:
    """Create the API application around a set of services."""
    from .escrow import router as escrow_router
    from .registry import router as registry_router
    from .whitelist import router as whitelist_router
    from .mint import router as mint_router
    from .system import router as system_router

    app = FastAPI(
        title="Punk Escrow API",
        description="Escrow marketplace, registry and mint authorization for punk tokens",
        version=VERSION
    )
    app.state.services = services

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        fields = ', '.join('.'.join(str(p) for p in err['loc'] if p != 'body') for err in errors)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={'detail': {'kind': 'validation', 'detail': f"Missing or invalid fields: {fields}"}}
        )

    # Add routes
    app.include_router(escrow_router)
    app.include_router(registry_router)
    app.include_router(whitelist_router)
    app.include_router(mint_router)
    app.include_router(system_router)

    @app.get("/")
    async def root():
        return {
            "name": "Punk Escrow API",
            "version": VERSION,
            "network": services.settings['network'],
            "status": "running"
        }

    return app
