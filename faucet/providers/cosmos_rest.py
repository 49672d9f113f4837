"""
Async client for the Cosmos-SDK REST (LCD) gateway.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ..core.errors import ChainRequestError, CosmosAccountError
from ..core.models import AccountState

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)


def parse_account(address: str, payload: Dict[str, Any]) -> AccountState:
    """Extract number, sequence and pubkey from an auth/accounts response.

    Handles a plain BaseAccount and wrappers (EthAccount and friends) that
    nest it under ``base_account``.
    """
    account = payload.get("account")
    if not isinstance(account, dict):
        raise CosmosAccountError(f"No account in response for {address}")

    base = account.get("base_account", account)
    pub_key = base.get("pub_key") or {}

    try:
        return AccountState(
            address=base.get("address", address),
            account_number=int(base.get("account_number", 0)),
            sequence=int(base.get("sequence", 0)),
            public_key=pub_key.get("key") if isinstance(pub_key, dict) else None,
        )
    except (TypeError, ValueError) as e:
        raise CosmosAccountError(f"Unparsable account for {address}: {e}") from e


class CosmosRestClient:
    """Account, balance and tx endpoints of the LCD gateway."""

    name = "cosmos_rest"

    def __init__(
        self,
        endpoint: str,
        *,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def _get(self, path: str, params: Optional[Dict[str, str]] = None) -> httpx.Response:
        try:
            return await self._client.get(f"{self.endpoint}{path}", params=params)
        except httpx.HTTPError as e:
            raise ChainRequestError(f"GET {path} failed: {e}", {"path": path}) from e

    async def get_account(self, address: str) -> AccountState:
        """Fetch account number and sequence. Call immediately before signing."""
        response = await self._get(f"/cosmos/auth/v1beta1/accounts/{address}")
        if response.status_code == 404:
            raise CosmosAccountError(f"Account {address} does not exist on chain")
        if response.is_error:
            raise ChainRequestError(
                f"Account query failed ({response.status_code}): {_error_message(response)}",
                {"address": address},
            )
        return parse_account(address, response.json())

    async def get_balance(self, address: str, denom: str) -> int:
        response = await self._get(
            f"/cosmos/bank/v1beta1/balances/{address}/by_denom",
            params={"denom": denom},
        )
        if response.is_error:
            raise ChainRequestError(
                f"Balance query failed ({response.status_code}): {_error_message(response)}",
                {"address": address, "denom": denom},
            )
        balance = response.json().get("balance") or {}
        return int(balance.get("amount") or 0)

    async def broadcast_tx(self, tx_bytes_b64: str, mode: str = "BROADCAST_MODE_SYNC") -> Dict[str, Any]:
        """POST a signed tx. Returns the raw JSON body, including error bodies.

        HTTP 4xx/5xx bodies from the gateway carry the rejection reason, so
        they are returned to the caller for classification rather than raised.
        """
        try:
            response = await self._client.post(
                f"{self.endpoint}/cosmos/tx/v1beta1/txs",
                json={"tx_bytes": tx_bytes_b64, "mode": mode},
            )
        except httpx.HTTPError as e:
            raise ChainRequestError(f"Broadcast request failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {"code": response.status_code, "message": response.text}
        if response.is_error and isinstance(body, dict):
            body.setdefault("code", response.status_code)
        return body

    async def get_tx(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Return the tx_response for a hash, or None if not yet indexed."""
        response = await self._get(f"/cosmos/tx/v1beta1/txs/{tx_hash}")
        if response.status_code in (400, 404):
            return None
        if response.is_error:
            raise ChainRequestError(
                f"Tx query failed ({response.status_code}): {_error_message(response)}",
                {"tx_hash": tx_hash},
            )
        data = response.json()
        return data.get("tx_response") or data

    async def latest_height(self) -> int:
        response = await self._get("/cosmos/base/tendermint/v1beta1/blocks/latest")
        if response.is_error:
            raise ChainRequestError(
                f"Latest block query failed ({response.status_code}): {_error_message(response)}"
            )
        block = response.json().get("block") or {}
        return int(block["header"]["height"])

    async def health_check(self) -> Dict[str, Any]:
        try:
            return {"status": "healthy", "height": await self.latest_height()}
        except (ChainRequestError, KeyError, ValueError, TypeError) as e:
            return {"status": "error", "reason": str(e)}

    def tx_url(self, tx_hash: str) -> str:
        return f"{self.endpoint}/cosmos/tx/v1beta1/txs/{tx_hash}"

    async def close(self) -> None:
        await self._client.aclose()
