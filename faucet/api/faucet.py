import logging
import uuid
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..core.errors import (
    FaucetError,
    InvalidAddressError,
    RateLimitExceededError,
    RequestInProgressError,
)
from ..core.models import AddressType
from ..logging_config import bind_request_context
from ..services.faucet import FaucetService

logger = logging.getLogger(__name__)

router = APIRouter()


def get_faucet(request: Request) -> FaucetService:
    """The service instance created in the app lifespan."""
    return request.app.state.faucet


def client_ip(request: Request) -> str:
    """Best guess at the caller's address behind the usual proxies."""
    for header in ("cf-connecting-ip", "x-real-ip"):
        value = request.headers.get(header)
        if value:
            return value.strip()
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def status_code_for(error: FaucetError) -> int:
    if isinstance(error, InvalidAddressError):
        return 400
    if isinstance(error, RateLimitExceededError):
        return 429
    if isinstance(error, RequestInProgressError):
        return 409
    return 502


async def faucet_error_handler(request: Request, exc: FaucetError) -> JSONResponse:
    status_code = status_code_for(exc)
    headers = {}
    if isinstance(exc, RateLimitExceededError):
        headers["Retry-After"] = str(exc.retry_after)
    if status_code >= 500:
        logger.error(f"{request.url.path} failed: {exc.code}: {exc.message}")
    else:
        logger.info(f"{request.url.path} rejected: {exc.code}: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


@router.get("/send/{address}")
async def send_tokens(
    address: str,
    request: Request,
    faucet: FaucetService = Depends(get_faucet),
) -> Dict[str, Any]:
    """Top up ``address`` on whichever ledger it belongs to."""
    ip = client_ip(request)
    bind_request_context(request_id=uuid.uuid4().hex[:12], recipient=address, client_ip=ip)

    result = await faucet.dispense(address, ip)
    return {"result": result.to_dict()}


@router.get("/config.json")
async def get_config(faucet: FaucetService = Depends(get_faucet)) -> Dict[str, Any]:
    return faucet.public_config()


@router.get("/balance/{ledger}")
async def get_balances(
    ledger: Literal["evm", "cosmos"],
    address: Optional[str] = None,
    faucet: FaucetService = Depends(get_faucet),
) -> Dict[str, Any]:
    """Holdings of the faucet, or of ``?address=``, on one ledger."""
    return await faucet.ledger_balances(AddressType(ledger), address)


@router.get("/api/approvals")
async def get_approvals(faucet: FaucetService = Depends(get_faucet)) -> Dict[str, Any]:
    statuses = await faucet.approval_status()
    return {
        "contract": faucet.settings.atomic_multisend_address or None,
        "operator": faucet.signer.hex_address,
        "approvals": [s.to_dict() for s in statuses],
        "all_sufficient": all(s.sufficient for s in statuses),
    }
