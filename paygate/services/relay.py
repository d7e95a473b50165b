# paygate/services/relay.py
"""
Async JSON-RPC client for the relay that executes call batches for the
merchant account.

The relay is treated as an opaque service with three operations:
- wallet_prepareCalls: quote a batch and return the digest to sign
- wallet_sendPreparedCalls: submit the signed batch, returns a batch id
- wallet_getCallsStatus: report a batch's status code and receipts

Every response is validated into an explicit result type. Anything that
does not match raises RelayError so callers fail closed.
"""
import itertools
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from paygate.core.config import settings

logger = logging.getLogger(__name__)

# EIP-5792 style batch status codes
STATUS_PENDING = 100
STATUS_CONFIRMED = 200


class RelayError(Exception):
    """The relay returned an error, an unexpected HTTP status, or an unknown shape."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class RelayResponseError(RelayError):
    """The relay answered, but the result did not match the expected type."""


class Call(BaseModel):
    to: str
    data: str
    value: str = "0x0"


class PreparedCalls(BaseModel):
    """wallet_prepareCalls result: opaque context plus the digest to sign."""
    context: Any
    digest: str = Field(pattern=r"^0x[0-9a-fA-F]{64}$")


class SubmittedCalls(BaseModel):
    """wallet_sendPreparedCalls result."""
    id: str = Field(min_length=1)


class CallReceipt(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    transaction_hash: str = Field(alias="transactionHash")


class CallsStatus(BaseModel):
    """wallet_getCallsStatus result."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    status_code: int = Field(validation_alias=AliasChoices("status", "statusCode"))
    receipts: List[CallReceipt] = []

    @property
    def is_pending(self) -> bool:
        return self.status_code < STATUS_CONFIRMED

    @property
    def is_confirmed(self) -> bool:
        return self.status_code == STATUS_CONFIRMED

    @property
    def transaction_hash(self) -> Optional[str]:
        if self.receipts:
            return self.receipts[0].transaction_hash
        return None


class RelayClient:
    """
    Process-wide relay client.

    Owns one ``httpx.AsyncClient``; create it at startup and ``aclose`` it
    at shutdown. Tests pass their own client (e.g. with ``httpx.MockTransport``).
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None
    ):
        self.rpc_url = rpc_url or str(settings.RELAY_RPC_URL)
        self._http = http_client or httpx.AsyncClient(
            timeout=timeout or settings.RELAY_HTTP_TIMEOUT_SECONDS
        )
        self._ids = itertools.count(1)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def request(self, method: str, params: List[Any]) -> Any:
        """
        Perform a single JSON-RPC call and return its ``result``.

        Raises:
            RelayError: on transport failure, non-2xx status, JSON-RPC error,
                or a response without ``result``
        """
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self._http.post(self.rpc_url, json=body)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise RelayError(f"{method} transport error: {e}")
        except ValueError as e:
            raise RelayError(f"{method} returned invalid JSON: {e}")

        if not isinstance(data, dict):
            raise RelayError(f"{method} returned a non-object response")
        if data.get("error"):
            error = data["error"]
            if isinstance(error, dict):
                raise RelayError(f"{method} failed: {error.get('message')}", code=error.get("code"))
            raise RelayError(f"{method} failed: {error}")
        if "result" not in data:
            raise RelayError(f"{method} response missing 'result' field")
        return data["result"]

    async def forward(self, body: Any, url: Optional[str] = None) -> httpx.Response:
        """
        Pass a raw JSON-RPC body through to a relay transport unchanged.

        Raises:
            RelayError: if the transport cannot be reached
        """
        try:
            return await self._http.post(url or self.rpc_url, json=body)
        except httpx.HTTPError as e:
            raise RelayError(f"relay transport error: {e}")

    async def prepare_calls(
        self,
        account: str,
        calls: List[Call],
        chain_id: int,
        fee_token: str,
        key: Dict[str, Any]
    ) -> PreparedCalls:
        result = await self.request("wallet_prepareCalls", [{
            "calls": [call.model_dump() for call in calls],
            "capabilities": {"meta": {"feeToken": fee_token}},
            "chainId": hex(chain_id),
            "from": account,
            "key": key,
        }])
        return self._parse(PreparedCalls, result, "wallet_prepareCalls")

    async def send_prepared_calls(
        self,
        prepared: PreparedCalls,
        signature: str,
        key: Dict[str, Any]
    ) -> SubmittedCalls:
        result = await self.request("wallet_sendPreparedCalls", [{
            "context": prepared.context,
            "key": key,
            "signature": signature,
        }])
        # Some relays wrap the id in a single-element list
        if isinstance(result, list) and len(result) == 1:
            result = result[0]
        return self._parse(SubmittedCalls, result, "wallet_sendPreparedCalls")

    async def get_calls_status(self, batch_id: str) -> CallsStatus:
        result = await self.request("wallet_getCallsStatus", [batch_id])
        return self._parse(CallsStatus, result, "wallet_getCallsStatus")

    @staticmethod
    def _parse(model, result: Any, method: str):
        try:
            return model.model_validate(result)
        except ValidationError as e:
            raise RelayResponseError(f"{method} returned an unrecognized result: {e.errors(include_url=False)}")
