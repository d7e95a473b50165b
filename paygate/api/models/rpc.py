from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel


class JsonRpcRequest(BaseModel):
    """
    A single JSON-RPC 2.0 request forwarded to the merchant relay.
    """
    jsonrpc: str = "2.0"
    id: Optional[Union[int, str]] = None
    method: str
    params: Union[List[Any], Dict[str, Any], None] = None
