"""
Minimal async JSON-RPC client for the EVM side of the chain.
"""

import itertools
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..core.errors import ChainRequestError

logger = logging.getLogger(__name__)


class EvmRpcError(ChainRequestError):
    """JSON-RPC error object returned by the node."""

    def __init__(self, method: str, error: Dict[str, Any]):
        message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
        super().__init__(f"RPC error in {method}: {message}", {"method": method, "error": error})
        self.method = method
        self.rpc_message = message
        self.rpc_code = error.get("code") if isinstance(error, dict) else None
        self.rpc_data = error.get("data") if isinstance(error, dict) else None


class EvmRpcClient:
    """
    Thin wrapper over the node's JSON-RPC endpoint.

    All quantities come back as Python ints; hex decoding happens here so
    callers never touch ``0x`` strings for amounts.
    """

    name = "evm_rpc"

    def __init__(
        self,
        endpoint: str,
        *,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoint = endpoint
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def _rpc_call(self, method: str, params: List[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }

        try:
            response = await self._client.post(
                self.endpoint,
                json=payload,
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPError as e:
            raise ChainRequestError(f"{method} request failed: {e}", {"method": method}) from e
        except ValueError as e:
            raise ChainRequestError(f"{method} returned invalid JSON", {"method": method}) from e

        if "error" in result:
            raise EvmRpcError(method, result["error"])

        return result.get("result")

    async def chain_id(self) -> int:
        return int(await self._rpc_call("eth_chainId", []), 16)

    async def get_balance(self, address: str, block: str = "latest") -> int:
        return int(await self._rpc_call("eth_getBalance", [address, block]), 16)

    async def call(self, to: str, data: str, block: str = "latest") -> str:
        """eth_call returning the raw hex result."""
        return await self._rpc_call("eth_call", [{"to": to, "data": data}, block])

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return int(await self._rpc_call("eth_getTransactionCount", [address, block]), 16)

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        call_obj = {k: v for k, v in tx.items() if k in {"from", "to", "data", "value"}}
        if isinstance(call_obj.get("value"), int):
            call_obj["value"] = hex(call_obj["value"])
        return int(await self._rpc_call("eth_estimateGas", [call_obj]), 16)

    async def gas_price(self) -> int:
        return int(await self._rpc_call("eth_gasPrice", []), 16)

    async def send_raw_transaction(self, raw_tx: bytes) -> str:
        tx_hash = await self._rpc_call("eth_sendRawTransaction", ["0x" + raw_tx.hex()])
        logger.info("EVM transaction submitted: %s", tx_hash)
        return tx_hash

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self._rpc_call("eth_getTransactionReceipt", [tx_hash])

    async def get_code(self, address: str, block: str = "latest") -> str:
        return await self._rpc_call("eth_getCode", [address, block]) or "0x"

    async def health_check(self) -> Dict[str, Any]:
        try:
            return {"status": "healthy", "chain_id": await self.chain_id()}
        except (ChainRequestError, ValueError, TypeError) as e:
            return {"status": "error", "reason": str(e)}

    async def close(self) -> None:
        await self._client.aclose()
