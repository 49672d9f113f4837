"""
Recipient balance lookup across both ledgers.
"""

import asyncio
import logging
from typing import List, Sequence

from ..config import TokenConfig
from ..core.models import AddressType, TokenBalance
from ..execution.contracts import ERC20
from ..providers.cosmos_rest import CosmosRestClient
from ..providers.evm_rpc import EvmRpcClient

logger = logging.getLogger(__name__)


class BalanceResolver:
    """
    Reads the recipient's current holding of every relevant token.

    A failed read is logged and reported as zero with ``error`` set, so one
    flaky token never blocks the others.
    """

    def __init__(
        self,
        evm_rpc: EvmRpcClient,
        cosmos_rest: CosmosRestClient,
        tokens: Sequence[TokenConfig],
    ):
        self.evm_rpc = evm_rpc
        self.cosmos_rest = cosmos_rest
        self.tokens = list(tokens)

    def relevant_tokens(self, address_type: AddressType) -> List[TokenConfig]:
        if address_type == AddressType.COSMOS:
            return [t for t in self.tokens if t.is_native]
        return list(self.tokens)

    async def resolve(self, address: str, address_type: AddressType) -> List[TokenBalance]:
        tokens = self.relevant_tokens(address_type)
        if address_type == AddressType.EVM:
            reads = [self._evm_balance(address, token) for token in tokens]
        elif address_type == AddressType.COSMOS:
            reads = [self.cosmos_rest.get_balance(address, token.denom) for token in tokens]
        else:
            raise ValueError(f"Cannot resolve balances for {address_type.value} address")

        results = await asyncio.gather(*reads, return_exceptions=True)

        balances = []
        for token, result in zip(tokens, results):
            balance = TokenBalance(
                denom=token.denom,
                current=0,
                target=token.target_balance,
                decimals=token.decimals,
            )
            if isinstance(result, Exception):
                logger.warning(f"Balance read for {token.denom} at {address} failed: {result}")
                balance.error = str(result) or type(result).__name__
            else:
                balance.current = result
            balances.append(balance)
        return balances

    async def _evm_balance(self, address: str, token: TokenConfig) -> int:
        if token.is_native:
            return await self.evm_rpc.get_balance(address)
        result = await self.evm_rpc.call(token.contract, ERC20.encode_balance_of(address))
        return ERC20.decode_uint256(result)
