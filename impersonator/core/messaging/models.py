"""
Bridge message models.

Inbound messages come from an untrusted embedded document; anything that does
not parse into ``InboundMessage`` is dropped before it reaches a handler.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr


RequestId = Union[StrictStr, StrictInt]


class BridgeMethod(str, Enum):
    """Closed set of commands an embedded app may send."""
    GET_SAFE_INFO = "getSafeInfo"
    GET_ENVIRONMENT_INFO = "getEnvironmentInfo"
    GET_ENV_INFO = "getEnvInfo"              # Legacy alias of getEnvironmentInfo
    RPC_CALL = "rpcCall"
    SEND_TRANSACTIONS = "sendTransactions"
    SIGN_MESSAGE = "signMessage"
    SIGN_TYPED_MESSAGE = "signTypedMessage"
    GET_SAFE_BALANCES = "getSafeBalances"


class InboundMessage(BaseModel):
    """``{id, method, params}`` as posted by the embedded app."""

    model_config = ConfigDict(extra="allow")

    id: RequestId
    method: BridgeMethod
    params: Dict[str, Any] = Field(default_factory=dict)

    @property
    def replay_key(self) -> str:
        return f"{self.id}_{self.method.value}"


class WindowHandle(Protocol):
    """The receiving end of a postMessage-style channel."""

    def post_message(self, message: Dict[str, Any], target_origin: str) -> None:
        ...


class FrameRef(Protocol):
    """The tracked embedding; ``content_window`` is None until the frame loads."""

    content_window: Optional[WindowHandle]


@dataclass
class MessageEvent:
    """One delivery on the channel: payload, sender origin and sender window."""
    data: Any
    origin: Optional[str] = None
    source: Any = None


class MessageFormatter:
    """Builds versioned response envelopes."""

    @staticmethod
    def make_response(request_id: Any, data: Any, version: str) -> Dict[str, Any]:
        return {
            "id": request_id,
            "success": True,
            "version": version,
            "data": data,
        }

    @staticmethod
    def make_error_response(request_id: Any, error: str, version: str) -> Dict[str, Any]:
        return {
            "id": request_id,
            "success": False,
            "error": error,
            "version": version,
        }
