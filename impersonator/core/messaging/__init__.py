"""
Embedded App Messaging

Usage:
    from impersonator.core.messaging import MessageBridge, ImpersonationSession

    bridge = MessageBridge(frame)
    session = ImpersonationSession(bridge, engine, provider, address, app_url=url)
    bridge.start()
    await bridge.handle_incoming_message(event)
"""

from .models import (
    BridgeMethod,
    FrameRef,
    InboundMessage,
    MessageEvent,
    MessageFormatter,
    WindowHandle,
)

from .communicator import MessageBridge

from .session import (
    BLOCKED_RPC_METHODS,
    ImpersonationSession,
    PendingSignature,
)

__all__ = [
    # Models
    "BridgeMethod",
    "FrameRef",
    "InboundMessage",
    "MessageEvent",
    "MessageFormatter",
    "WindowHandle",
    # Bridge
    "MessageBridge",
    # Session
    "BLOCKED_RPC_METHODS",
    "ImpersonationSession",
    "PendingSignature",
]
