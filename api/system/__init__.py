"""System health endpoint."""

import logging
import os
import time
from typing import Optional

import psutil
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from documents import DocumentStoreError
from listings import DEPOSITED, PENDING
from wallet import WalletError
from ..main import Services, get_services

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(
    prefix="/system",
    tags=["System"]
)

class SystemHealth(BaseModel):
    """Model for system health data."""
    status: str
    uptime: float
    cpu_usage: float
    memory_usage: float
    network: str
    document_store_status: str
    wallet_status: str
    escrow_balance: Optional[int] = None
    pending_listings: Optional[int] = None
    deposited_listings: Optional[int] = None
    monitor_running: bool

@router.get("/health")
async def get_system_health(services: Services = Depends(get_services)) -> SystemHealth:
    """Get system health status.

    Returns:
        SystemHealth object with process metrics and dependency status
    """
    try:
        process = psutil.Process(os.getpid())
        cpu_percent = psutil.cpu_percent()
        memory = psutil.virtual_memory()
        uptime = time.time() - process.create_time()

        pending = deposited = None
        try:
            listings = await services.listings.list_active()
            pending = sum(1 for l in listings if l.status == PENDING)
            deposited = sum(1 for l in listings if l.status == DEPOSITED)
            document_status = "connected"
        except DocumentStoreError as e:
            logger.warning(f"Health check: document store unavailable: {e}")
            document_status = "unavailable"

        balance = None
        try:
            balance = await services.wallet.get_balance()
            wallet_status = "connected"
        except WalletError as e:
            logger.warning(f"Health check: wallet unavailable: {e}")
            wallet_status = "unavailable"

        healthy = document_status == "connected" and wallet_status == "connected"
        return SystemHealth(
            status="healthy" if healthy and cpu_percent < 80 else "degraded",
            uptime=uptime,
            cpu_usage=cpu_percent,
            memory_usage=memory.percent,
            network=services.settings['network'],
            document_store_status=document_status,
            wallet_status=wallet_status,
            escrow_balance=balance,
            pending_listings=pending,
            deposited_listings=deposited,
            monitor_running=services.monitor.running
        )
    except Exception as e:
        logger.exception(f"Health check failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )
