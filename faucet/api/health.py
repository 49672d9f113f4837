from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..services.faucet import FaucetService
from .faucet import get_faucet

router = APIRouter()


@router.get("/healthz")
async def health_check(faucet: FaucetService = Depends(get_faucet)) -> Dict[str, Any]:
    """Dependency checks plus the signer identity and background task state"""

    health = await faucet.system_health()
    return {
        **health,
        "network": faucet.settings.network_name,
        "addresses": {
            "evm": faucet.signer.hex_address,
            "cosmos": faucet.signer.bech32_address,
        },
        "testing_mode": faucet.settings.testing_mode,
        "approval_sweep_running": bool(faucet.sweeper and faucet.sweeper.running),
        "token_count": len(faucet.tokens),
    }
