import json

import httpx
import pytest

from faucet.core.errors import ChainRequestError, CosmosAccountError
from faucet.providers.cosmos_rest import CosmosRestClient, parse_account
from faucet.providers.evm_rpc import EvmRpcClient, EvmRpcError

REST_URL = "https://rest.example"
EVM_URL = "https://evm.example"


def _rest(handler) -> CosmosRestClient:
    return CosmosRestClient(REST_URL, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def _evm(handler) -> EvmRpcClient:
    return EvmRpcClient(EVM_URL, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def test_parse_base_account():
    payload = {
        "account": {
            "@type": "/cosmos.auth.v1beta1.BaseAccount",
            "address": "cosmos1abc",
            "pub_key": {"@type": "/cosmos.evm.crypto.v1.ethsecp256k1.PubKey", "key": "AqJ3"},
            "account_number": "12",
            "sequence": "34",
        }
    }

    account = parse_account("cosmos1abc", payload)

    assert (account.account_number, account.sequence, account.public_key) == (12, 34, "AqJ3")


def test_parse_nested_eth_account_without_pubkey():
    payload = {
        "account": {
            "@type": "/cosmos.evm.types.v1.EthAccount",
            "base_account": {"address": "cosmos1abc", "pub_key": None, "account_number": "3", "sequence": "0"},
            "code_hash": "0x",
        }
    }

    account = parse_account("cosmos1abc", payload)

    assert (account.account_number, account.sequence, account.public_key) == (3, 0, None)


def test_parse_rejects_garbage():
    with pytest.raises(CosmosAccountError):
        parse_account("cosmos1abc", {})
    with pytest.raises(CosmosAccountError):
        parse_account("cosmos1abc", {"account": {"sequence": "many"}})


@pytest.mark.asyncio
async def test_missing_account_is_an_error():
    rest = _rest(lambda request: httpx.Response(404, json={"code": 5, "message": "account not found"}))

    with pytest.raises(CosmosAccountError):
        await rest.get_account("cosmos1abc")


@pytest.mark.asyncio
async def test_broadcast_posts_sync_mode_and_returns_error_bodies():
    seen = {}

    def handler(request):
        seen.update(json.loads(request.content))
        assert request.url.path == "/cosmos/tx/v1beta1/txs"
        return httpx.Response(400, json={"code": 3, "message": "tx parse error"})

    body = await _rest(handler).broadcast_tx("AAAA")

    assert seen == {"tx_bytes": "AAAA", "mode": "BROADCAST_MODE_SYNC"}
    assert body == {"code": 3, "message": "tx parse error"}


@pytest.mark.asyncio
async def test_get_tx_not_indexed_yet_is_none():
    rest = _rest(lambda request: httpx.Response(404, json={"code": 5, "message": "tx not found"}))

    assert await rest.get_tx("ABCD") is None


@pytest.mark.asyncio
async def test_get_tx_returns_tx_response():
    rest = _rest(lambda request: httpx.Response(200, json={"tx": {}, "tx_response": {"code": 0, "height": "7"}}))

    assert await rest.get_tx("ABCD") == {"code": 0, "height": "7"}


@pytest.mark.asyncio
async def test_rpc_error_object_is_raised():
    def handler(request):
        body = json.loads(request.content)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32000, "message": "nonce too low"}})

    with pytest.raises(EvmRpcError) as exc_info:
        await _evm(handler).send_raw_transaction(b"\x01\x02")

    assert exc_info.value.rpc_message == "nonce too low"
    assert exc_info.value.rpc_code == -32000


@pytest.mark.asyncio
async def test_rpc_transport_failure_is_chain_request_error():
    def handler(request):
        return httpx.Response(503, text="unavailable")

    with pytest.raises(ChainRequestError):
        await _evm(handler).gas_price()


@pytest.mark.asyncio
async def test_estimate_gas_sends_hex_value():
    seen = {}

    def handler(request):
        body = json.loads(request.content)
        seen.update(body["params"][0])
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": "0x5208"})

    gas = await _evm(handler).estimate_gas({"from": "0x1", "to": "0x2", "data": "0x", "value": 255, "gas": 1})

    assert gas == 21000
    assert seen == {"from": "0x1", "to": "0x2", "data": "0x", "value": "0xff"}


@pytest.mark.asyncio
async def test_cosmos_health_reports_latest_height():
    def handler(request):
        assert request.url.path == "/cosmos/base/tendermint/v1beta1/blocks/latest"
        return httpx.Response(200, json={"block": {"header": {"height": "1234"}}})

    assert await _rest(handler).health_check() == {"status": "healthy", "height": 1234}


@pytest.mark.asyncio
async def test_cosmos_health_reports_errors():
    rest = _rest(lambda request: httpx.Response(500, json={"message": "down"}))

    health = await rest.health_check()

    assert health["status"] == "error"
    assert "down" in health["reason"]


@pytest.mark.asyncio
async def test_evm_health_and_code_lookup():
    def handler(request):
        body = json.loads(request.content)
        result = {"eth_chainId": "0x40000", "eth_getCode": "0x6080"}[body["method"]]
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    evm = _evm(handler)

    assert await evm.health_check() == {"status": "healthy", "chain_id": 262144}
    assert await evm.get_code("0x1111111111111111111111111111111111111111") == "0x6080"


@pytest.mark.asyncio
async def test_evm_health_reports_unreachable_node():
    assert (await _evm(lambda request: httpx.Response(503, text="unavailable")).health_check())["status"] == "error"
