"""
Distribution planning.

Given what a recipient holds and what each token's target is, compute the
top-up amounts. Integer arithmetic only.
"""

from typing import Dict, Iterable, List, Sequence

from ..config import TokenConfig
from .models import TokenAmount, TokenBalance


def _as_int(value: object, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{what} must be an int, got {type(value).__name__}")
    return value


def plan_distribution(
    balances: Iterable[TokenBalance],
    tokens: Sequence[TokenConfig],
) -> List[TokenAmount]:
    """Return max(0, target - current) per token, omitting tokens at or above target.

    Balances for denoms not present in ``tokens`` are ignored. Output order
    follows ``tokens``.
    """
    by_denom: Dict[str, TokenBalance] = {b.denom: b for b in balances}
    needed: List[TokenAmount] = []

    for token in tokens:
        balance = by_denom.get(token.denom)
        if balance is None:
            continue
        current = _as_int(balance.current, f"current balance of {token.denom}")
        target = _as_int(balance.target, f"target of {token.denom}")
        if current >= target:
            continue
        needed.append(
            TokenAmount(
                denom=token.denom,
                amount=target - current,
                contract=token.contract,
                decimals=token.decimals,
            )
        )
    return needed


def plan_testing_amounts(tokens: Sequence[TokenConfig], amount: int = 1) -> List[TokenAmount]:
    """Fixed amount of every token regardless of balance (testing mode)."""
    amount = _as_int(amount, "testing amount")
    return [
        TokenAmount(denom=t.denom, amount=amount, contract=t.contract, decimals=t.decimals)
        for t in tokens
    ]
