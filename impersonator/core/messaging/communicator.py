"""
Message bridge between the host and one embedded, untrusted app.

Inbound messages pass four gates before dispatch: structure, source window,
replay and origin. A message failing any gate is dropped without a reply;
only handler errors are reported back, as an error envelope. Engine and node
errors carry their message text; any other exception is reported as
"Request failed".
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ...config import settings
from ...logging_config import get_logger
from ...providers.rpc import RpcError
from ..errors import EngineError
from ..validation import normalize_origin, validate_message_origin
from .models import BridgeMethod, FrameRef, InboundMessage, MessageEvent, MessageFormatter


logger = get_logger(__name__)

MessageHandler = Callable[[InboundMessage], Awaitable[Any]]

GENERIC_ERROR_MESSAGE = "Request failed"


def _now_ms() -> float:
    return time.time() * 1000


class MessageBridge:
    """
    Request/response protocol over a postMessage-style channel.

    Owns its replay-key map and allowed origins; both live as long as the
    bridge and are dropped with it.
    """

    def __init__(
        self,
        frame: FrameRef,
        *,
        host_origin: Optional[str] = None,
        version: Optional[str] = None,
        replay_window_ms: Optional[int] = None,
        retention_ms: Optional[int] = None,
        cleanup_interval_ms: Optional[int] = None,
        clock: Callable[[], float] = _now_ms,
    ):
        self.frame = frame
        self.host_origin = host_origin or settings.bridge_host_origin
        self.version = version or settings.bridge_protocol_version
        self.replay_window_ms = (
            replay_window_ms if replay_window_ms is not None else settings.message_replay_window_ms
        )
        self.retention_ms = (
            retention_ms if retention_ms is not None else settings.message_timestamp_retention_ms
        )
        self.cleanup_interval_ms = (
            cleanup_interval_ms
            if cleanup_interval_ms is not None
            else settings.message_timestamp_cleanup_interval_ms
        )
        self._clock = clock

        self.allowed_origins: List[str] = []
        self._handlers: Dict[BridgeMethod, MessageHandler] = {}
        self._message_timestamps: Dict[str, float] = {}
        self._cleanup_task: Optional[asyncio.Task] = None

    # =========================================================================
    # Setup
    # =========================================================================

    def on(self, method: Union[BridgeMethod, str], handler: MessageHandler) -> None:
        self._handlers[BridgeMethod(method)] = handler

    def set_allowed_origin(self, origin: str) -> None:
        normalized = normalize_origin(origin)
        if normalized is None:
            raise ValueError(f"Invalid origin: {origin}")
        if normalized not in self.allowed_origins:
            self.allowed_origins.append(normalized)
            logger.info("allowed_origin_added", origin=normalized)

    def start(self) -> None:
        """Begin purging old replay keys on the cleanup interval."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())

    async def close(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        self._handlers.clear()
        self._message_timestamps.clear()

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval_ms / 1000)
            self.purge_old_timestamps()

    def purge_old_timestamps(self) -> int:
        cutoff = self._clock() - self.retention_ms
        stale = [key for key, ts in self._message_timestamps.items() if ts < cutoff]
        for key in stale:
            del self._message_timestamps[key]
        if stale:
            logger.debug("replay_keys_purged", count=len(stale))
        return len(stale)

    # =========================================================================
    # Inbound
    # =========================================================================

    def _drop(self, reason: str, **fields: Any) -> None:
        logger.debug("message_dropped", reason=reason, **fields)

    def validate_message(self, event: MessageEvent) -> Optional[InboundMessage]:
        """Run the gates in order; the parsed message if all pass, else None."""

        # Structure and known command
        if not isinstance(event.data, dict):
            self._drop("not_an_object")
            return None
        try:
            message = InboundMessage.model_validate(event.data)
        except PydanticValidationError:
            self._drop("malformed", method=event.data.get("method"))
            return None

        # Source window
        expected = self.frame.content_window if self.frame is not None else None
        if expected is None or event.source is not expected:
            self._drop("source_mismatch", method=message.method.value)
            return None

        # Replay
        now = self._clock()
        key = message.replay_key
        last_seen = self._message_timestamps.get(key)
        if last_seen is not None and now - last_seen < self.replay_window_ms:
            self._drop("replay", key=key)
            return None
        self._message_timestamps[key] = now

        # Origin
        if self.allowed_origins and not validate_message_origin(event.origin, self.allowed_origins):
            self._drop("origin_not_allowed", origin=event.origin)
            return None

        return message

    async def handle_incoming_message(self, event: MessageEvent) -> None:
        message = self.validate_message(event)
        if message is None:
            return

        handler = self._handlers.get(message.method)
        if handler is None:
            self._drop("no_handler", method=message.method.value)
            return

        try:
            response = await handler(message)
        except EngineError as e:
            logger.warning("handler_failed", method=message.method.value, error=e.message)
            self.send(e.message, message.id, error=True)
            return
        except RpcError as e:
            logger.warning("handler_failed", method=message.method.value, error=str(e))
            self.send(str(e), message.id, error=True)
            return
        except Exception as e:
            # Arbitrary exception text may hold endpoints or keys; the frame is untrusted.
            logger.warning("handler_failed", method=message.method.value, error=repr(e))
            self.send(GENERIC_ERROR_MESSAGE, message.id, error=True)
            return

        # None means the reply is sent later through send()
        if response is not None:
            self.send(response, message.id)

    # =========================================================================
    # Outbound
    # =========================================================================

    @property
    def target_origin(self) -> str:
        if self.allowed_origins:
            return self.allowed_origins[0]
        return self.host_origin

    def _post(self, message: Dict[str, Any]) -> bool:
        window = self.frame.content_window if self.frame is not None else None
        if window is None:
            logger.debug("post_skipped_no_frame")
            return False
        window.post_message(message, self.target_origin)
        return True

    def send(self, data: Any, request_id: Any, error: bool = False) -> bool:
        """Post a response envelope for ``request_id`` to the embedded app."""
        if error:
            envelope = MessageFormatter.make_error_response(request_id, str(data), self.version)
        else:
            envelope = MessageFormatter.make_response(request_id, data, self.version)
        return self._post(envelope)

    def send_message_to_frame(self, message: Dict[str, Any], request_id: Optional[Any] = None) -> bool:
        """Host-initiated interface message, stamped with a request id and the protocol version."""
        payload = {
            **message,
            "requestId": request_id if request_id is not None else int(time.perf_counter() * 1000),
            "version": self.version,
        }
        return self._post(payload)
