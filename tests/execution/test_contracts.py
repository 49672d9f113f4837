from eth_abi import decode, encode

from faucet.execution.contracts import ERC20, AtomicMultiSend, function_selector

WBTC = "0x921c48F521329cF6187D1De1D0Ca5181B47FF946"
USDT = "0x480f8F25d13D523e89E9aaC518A5674A305ff687"
ZERO = "0x0000000000000000000000000000000000000000"


def test_erc20_selectors_match_known_values():
    assert ERC20.BALANCE_OF.hex() == "70a08231"
    assert ERC20.ALLOWANCE.hex() == "dd62ed3e"
    assert ERC20.APPROVE.hex() == "095ea7b3"
    assert ERC20.DECIMALS.hex() == "313ce567"
    assert ERC20.SYMBOL.hex() == "95d89b41"


def test_approve_calldata():
    data = ERC20.encode_approve(WBTC, 123)

    assert data.startswith("0x095ea7b3")
    spender, amount = decode(["address", "uint256"], bytes.fromhex(data[10:]))
    assert spender.lower() == WBTC.lower()
    assert amount == 123


def test_uint256_decoding():
    result = "0x" + encode(["uint256"], [2**200]).hex()

    assert ERC20.decode_uint256(result) == 2**200


def test_multi_send_calldata_encodes_native_leg_with_zero_address():
    data = AtomicMultiSend.encode_multi_send(
        "0x2222222222222222222222222222222222222222",
        [(ZERO, 5), (WBTC, 1000), (USDT, 500)],
    )

    selector = function_selector("atomicMultiSend(address,(address,uint256)[])")
    assert data.startswith("0x" + selector.hex())
    recipient, transfers = decode(["address", "(address,uint256)[]"], bytes.fromhex(data[10:]))
    assert recipient == "0x2222222222222222222222222222222222222222"
    assert [(token.lower(), amount) for token, amount in transfers] == [
        (ZERO, 5),
        (WBTC.lower(), 1000),
        (USDT.lower(), 500),
    ]


def test_get_balance_defaults_to_native():
    data = AtomicMultiSend.encode_get_balance()

    (token,) = decode(["address"], bytes.fromhex(data[10:]))
    assert token == ZERO
