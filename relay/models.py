from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional, Union

TOOL_CALL_METHOD = "tools/call"


class Operation(BaseModel):
    """JSON-RPC request forwarded to the backend."""

    jsonrpc: str = "2.0"
    id: Union[int, str] = 1
    method: str
    params: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def tool_call(
        cls, name: str, arguments: Optional[Dict[str, Any]] = None, id: Union[int, str] = 1
    ) -> "Operation":
        return cls(
            id=id,
            method=TOOL_CALL_METHOD,
            params={"name": name, "arguments": arguments or {}},
        )

    @property
    def is_tool_call(self) -> bool:
        return self.method == TOOL_CALL_METHOD

    @property
    def tool_name(self) -> Optional[str]:
        return self.params.get("name")

    @property
    def tool_arguments(self) -> Dict[str, Any]:
        return self.params.get("arguments") or {}


class ConnectionStatus(BaseModel):
    isConnected: bool
    isInitializing: bool
    reconnectAttempts: int
    maxReconnectAttempts: int

    def summary(self) -> Dict[str, Any]:
        """Status without the configured maximum, as embedded in tool listings."""
        return self.model_dump(exclude={"maxReconnectAttempts"})


class PingResponse(BaseModel):
    status: str = "ok"
    timestamp: str
    message: str = "HTTP Wrapper Server is running"
    mcpServerUrl: str
    mcpClientReady: bool
    connectionStatus: ConnectionStatus
    note: str = "Connects directly to MCP server using MCP client"


class ToolDescriptor(BaseModel):
    name: str
    endpoint: str
    method: str
    description: str
    parameters: Dict[str, str]
    note: str
    status: str
    connectionInfo: Dict[str, Any]


class ToolsResponse(BaseModel):
    tools: List[ToolDescriptor]


class GetCookieResponse(BaseModel):
    success: bool = True
    message: str
    response: Any
    request: Dict[str, Any]


def to_jsonable(result: Any) -> Any:
    """Dump MCP result models as the backend sent them; pass plain data through."""
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json", by_alias=True, exclude_none=True)
    return result
