# paygate/api/endpoints/rpc.py
"""
Merchant relay endpoint.

Wallets point their merchant RPC URL here. JSON-RPC requests are forwarded
to the relay transport registered for the request's chain, and
``wallet_prepareCalls`` requests that pass the sponsorship predicate get the
merchant account attached as fee payer.
"""
import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError
from starlette.responses import JSONResponse

from paygate.api.dependencies import SponsorPredicate, get_relay_client, get_sponsor_predicate
from paygate.api.models.rpc import JsonRpcRequest
from paygate.core.config import settings
from paygate.services.relay import RelayClient, RelayError

logger = logging.getLogger(__name__)

router = APIRouter()

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
INVALID_PARAMS = -32602
SERVER_ERROR = -32000


def rpc_error(code: int, message: str, request_id: Any = None, status_code: int = 400) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}},
    )


def extract_chain_id(rpc_request: JsonRpcRequest) -> Optional[int]:
    """Chain id from the first params object, accepting hex strings or integers."""
    params = rpc_request.params
    if not isinstance(params, list) or not params or not isinstance(params[0], dict):
        return None
    chain_id = params[0].get("chainId")
    if chain_id is None:
        return None
    if isinstance(chain_id, str):
        return int(chain_id, 16) if chain_id.startswith("0x") else int(chain_id)
    return int(chain_id)


def apply_sponsorship(rpc_request: JsonRpcRequest, fee_payer: str) -> None:
    """Attach the merchant as fee payer to a wallet_prepareCalls request in place."""
    request_params = rpc_request.params[0]
    capabilities = request_params.setdefault("capabilities", {})
    meta = capabilities.setdefault("meta", {})
    meta["feePayer"] = fee_payer


@router.post("/rpc")
async def merchant_rpc(
    request: Request,
    relay: RelayClient = Depends(get_relay_client),
    should_sponsor: SponsorPredicate = Depends(get_sponsor_predicate),
):
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return rpc_error(PARSE_ERROR, "Parse error")

    try:
        rpc_request = JsonRpcRequest.model_validate(body)
    except ValidationError:
        return rpc_error(INVALID_REQUEST, "Invalid request", body.get("id") if isinstance(body, dict) else None)

    try:
        chain_id = extract_chain_id(rpc_request)
    except (TypeError, ValueError):
        return rpc_error(INVALID_PARAMS, "Invalid chainId", rpc_request.id)

    url = settings.relay_url_for_chain(chain_id if chain_id is not None else settings.X402_CHAIN_ID)
    if url is None:
        logger.warning(f"Merchant RPC: unsupported chain {chain_id} for {rpc_request.method}")
        return rpc_error(INVALID_PARAMS, f"Unsupported chain: {chain_id}", rpc_request.id)

    if (
        rpc_request.method == "wallet_prepareCalls"
        and isinstance(rpc_request.params, list)
        and rpc_request.params
        and isinstance(rpc_request.params[0], dict)
        and settings.MERCHANT_ADDRESS
        and should_sponsor(rpc_request)
    ):
        apply_sponsorship(rpc_request, settings.MERCHANT_ADDRESS)
        logger.info(f"Merchant RPC: sponsoring {rpc_request.method} on chain {chain_id}")

    try:
        upstream = await relay.forward(rpc_request.model_dump(exclude_none=True), url=url)
    except RelayError as e:
        logger.error(f"Merchant RPC: forwarding {rpc_request.method} failed: {e}")
        return rpc_error(SERVER_ERROR, "Relay unavailable", rpc_request.id, status_code=502)

    try:
        content = upstream.json()
    except ValueError:
        logger.error(f"Merchant RPC: relay returned non-JSON for {rpc_request.method}")
        return rpc_error(SERVER_ERROR, "Invalid relay response", rpc_request.id, status_code=502)

    return JSONResponse(status_code=upstream.status_code, content=content)
