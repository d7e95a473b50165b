# paygate/api/dependencies.py
"""
Request dependencies for the API routers.

Process-wide resources live on ``app.state`` (created in the lifespan) and
reach handlers through these dependencies rather than module globals.
"""
from typing import Callable

from fastapi import HTTPException, Request

from paygate.api.models.rpc import JsonRpcRequest
from paygate.services.relay import RelayClient

SponsorPredicate = Callable[[JsonRpcRequest], bool]


def get_relay_client(request: Request) -> RelayClient:
    relay = getattr(request.app.state, "relay_client", None)
    if relay is None:
        raise HTTPException(status_code=503, detail="Relay client not initialised")
    return relay


def sponsor_all(rpc_request: JsonRpcRequest) -> bool:
    """Default sponsorship policy: the merchant pays fees for every request."""
    return True


def get_sponsor_predicate() -> SponsorPredicate:
    return sponsor_all
