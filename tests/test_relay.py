# tests/test_relay.py
"""
Unit tests for the relay JSON-RPC client, using httpx.MockTransport.
"""
import asyncio
import json

import httpx
import pytest

from paygate.services.relay import (
    Call,
    PreparedCalls,
    RelayClient,
    RelayError,
    RelayResponseError,
)

RELAY_URL = "https://relay.example/rpc"


def make_client(handler) -> RelayClient:
    return RelayClient(
        rpc_url=RELAY_URL,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def rpc_result(result, status_code=200):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        return httpx.Response(status_code, json={"jsonrpc": "2.0", "id": body["id"], "result": result})
    return handler


class TestRequest:
    """Test the JSON-RPC envelope handling."""

    def test_returns_result(self):
        seen = {}

        def handler(request):
            seen.update(json.loads(request.content))
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": seen["id"], "result": "0x1"})

        client = make_client(handler)
        assert asyncio.run(client.request("eth_chainId", [])) == "0x1"
        assert seen["method"] == "eth_chainId"
        assert seen["jsonrpc"] == "2.0"

    def test_rpc_error_raises(self):
        def handler(request):
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "insufficient fee"}})

        with pytest.raises(RelayError) as exc_info:
            asyncio.run(make_client(handler).request("wallet_prepareCalls", []))
        assert exc_info.value.code == -32000
        assert "insufficient fee" in str(exc_info.value)

    def test_http_error_raises(self):
        def handler(request):
            return httpx.Response(503, text="unavailable")

        with pytest.raises(RelayError):
            asyncio.run(make_client(handler).request("wallet_getCallsStatus", ["0x1"]))

    def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        with pytest.raises(RelayError):
            asyncio.run(make_client(handler).request("wallet_getCallsStatus", ["0x1"]))

    def test_missing_result_raises(self):
        def handler(request):
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1})

        with pytest.raises(RelayError):
            asyncio.run(make_client(handler).request("wallet_getCallsStatus", ["0x1"]))

    def test_non_json_raises(self):
        def handler(request):
            return httpx.Response(200, text="<html>")

        with pytest.raises(RelayError):
            asyncio.run(make_client(handler).request("wallet_getCallsStatus", ["0x1"]))


class TestTypedCalls:
    """Test result validation per relay operation."""

    def test_prepare_calls_request_and_result(self):
        seen = {}

        def handler(request):
            seen.update(json.loads(request.content))
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {
                "context": {"quote": "abc"},
                "digest": "0x" + "22" * 32,
            }})

        client = make_client(handler)
        prepared = asyncio.run(client.prepare_calls(
            account="0x9999999999999999999999999999999999999999",
            calls=[Call(to="0x036CbD53842c5426634e7929541eC2318f3dCF7e", data="0xabcd")],
            chain_id=84532,
            fee_token="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
            key={"type": "secp256k1", "publicKey": "0x01", "prehash": False},
        ))

        assert prepared.digest == "0x" + "22" * 32
        params = seen["params"][0]
        assert seen["method"] == "wallet_prepareCalls"
        assert params["chainId"] == hex(84532)
        assert params["capabilities"]["meta"]["feeToken"] == "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
        assert params["calls"] == [{"to": "0x036CbD53842c5426634e7929541eC2318f3dCF7e", "data": "0xabcd", "value": "0x0"}]

    def test_prepare_calls_bad_digest(self):
        client = make_client(rpc_result({"context": {}, "digest": "0x1234"}))
        with pytest.raises(RelayResponseError):
            asyncio.run(client.prepare_calls("0x1", [], 84532, "0x2", {}))

    def test_send_prepared_calls_unwraps_list(self):
        client = make_client(rpc_result([{"id": "0xbatch"}]))
        prepared = PreparedCalls(context={}, digest="0x" + "22" * 32)
        submitted = asyncio.run(client.send_prepared_calls(prepared, "0xsig", {}))
        assert submitted.id == "0xbatch"

    def test_send_prepared_calls_missing_id(self):
        client = make_client(rpc_result({"ok": True}))
        prepared = PreparedCalls(context={}, digest="0x" + "22" * 32)
        with pytest.raises(RelayResponseError):
            asyncio.run(client.send_prepared_calls(prepared, "0xsig", {}))

    def test_get_calls_status_confirmed(self):
        client = make_client(rpc_result({
            "id": "0xbatch",
            "status": 200,
            "receipts": [{"transactionHash": "0xtx", "status": "0x1", "blockNumber": "0x10"}],
        }))
        status = asyncio.run(client.get_calls_status("0xbatch"))
        assert status.is_confirmed
        assert not status.is_pending
        assert status.transaction_hash == "0xtx"

    def test_get_calls_status_accepts_status_code_key(self):
        client = make_client(rpc_result({"statusCode": 100}))
        status = asyncio.run(client.get_calls_status("0xbatch"))
        assert status.is_pending
        assert status.transaction_hash is None

    def test_get_calls_status_unrecognized(self):
        client = make_client(rpc_result({"state": "mined"}))
        with pytest.raises(RelayResponseError):
            asyncio.run(client.get_calls_status("0xbatch"))


class TestForward:
    """Test raw pass-through used by the merchant RPC route."""

    def test_forward_to_explicit_url(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 7, "result": "0x1"})

        response = asyncio.run(make_client(handler).forward({"jsonrpc": "2.0", "id": 7, "method": "eth_chainId"}, url="https://other.example/"))
        assert seen["url"] == "https://other.example/"
        assert response.json()["result"] == "0x1"

    def test_forward_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("down")

        with pytest.raises(RelayError):
            asyncio.run(make_client(handler).forward({"method": "eth_chainId"}))
