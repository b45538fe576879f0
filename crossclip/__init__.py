"""
CrossClip - 跨设备剪贴板中继

/ Hub, Protocol & Client Components
"""

__version__ = "1.0.0"
__author__ = "CrossClip Team"
__description__ = "End-to-end encrypted cross-device clipboard relay"

# Protocol core
from .protocol import (
    InboundType,
    OutboundType,
    RegisterFrame,
    MessageFrame,
    CopyFrame,
    RegisterSuccess,
    RelayedMessage,
    RelayedCopy,
    CopyResponse,
    ErrorReply,
    parse_frame,
)

# Client
from .client import RelayClient, key_hash

# Hub server
from .hub import RelayServer, Hub, MessageHandler, run_server

# Utilities
from .utils import RelayConfig, configure_logging, get_logger

# Exceptions
from .exceptions import (
    RelayError,
    TransportError,
    DecodeError,
    ClientError,
    ValidationError,
    StateError,
    UnknownTypeError,
    BackpressureEviction,
    OutboxClosedError,
    ConfigurationError,
)

__all__ = [
    # Version info
    "__version__",
    "__author__",
    "__description__",
    # Protocol core
    "InboundType",
    "OutboundType",
    "RegisterFrame",
    "MessageFrame",
    "CopyFrame",
    "RegisterSuccess",
    "RelayedMessage",
    "RelayedCopy",
    "CopyResponse",
    "ErrorReply",
    "parse_frame",
    # Client
    "RelayClient",
    "key_hash",
    # Hub server
    "RelayServer",
    "Hub",
    "MessageHandler",
    "run_server",
    # Utils
    "RelayConfig",
    "configure_logging",
    "get_logger",
    # Exceptions
    "RelayError",
    "TransportError",
    "DecodeError",
    "ClientError",
    "ValidationError",
    "StateError",
    "UnknownTypeError",
    "BackpressureEviction",
    "OutboxClosedError",
    "ConfigurationError",
]


def get_version() -> str:
    """Get the current version of CrossClip."""
    return __version__


def create_relay_server(host: str = "0.0.0.0", port: int = 8080) -> RelayServer:
    """Create a new relay server instance."""
    return RelayServer(RelayConfig(host=host, port=port))
