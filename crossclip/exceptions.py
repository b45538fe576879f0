"""
CrossClip Exceptions

Custom exception classes for error handling
"""


class RelayError(Exception):
    """Base CrossClip exception"""

    def __init__(self, message: str, error_code: str = "RELAY000", details: dict = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert to dictionary format"""
        return {
            "error_code": self.error_code,
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


# Transport errors
class TransportError(RelayError):
    """Stream read/write failure, fatal to the connection"""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message, "TRANSPORT001", details)


# Protocol errors
class DecodeError(RelayError):
    """Malformed inbound frame, skipped"""

    def __init__(self, message: str = "Invalid frame", details: dict = None):
        super().__init__(message, "PROTO001", details)


class ClientError(RelayError):
    """Error reported back to the offending client as an error frame"""

    def __init__(self, message: str, error_code: str = "PROTO000", details: dict = None):
        super().__init__(message, error_code, details)


class ValidationError(ClientError):
    """Missing or mismatched key, bad field"""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message, "PROTO002", details)


class StateError(ClientError):
    """Action not allowed in the connection's current state"""

    def __init__(self, message: str = "register first", details: dict = None):
        super().__init__(message, "PROTO003", details)


class UnknownTypeError(ClientError):
    """Unrecognized type discriminator"""

    def __init__(self, type_name: str, details: dict = None):
        message = f"unknown message type: {type_name}"
        super().__init__(message, "PROTO004", details)
        self.type_name = type_name


# Hub errors
class BackpressureEviction(RelayError):
    """Receiver outbox full, receiver torn down"""

    def __init__(self, message: str = "Outbox full", details: dict = None):
        super().__init__(message, "HUB001", details)


class OutboxClosedError(RelayError):
    """Outbox closed more than once"""

    def __init__(self, message: str = "Outbox already closed", details: dict = None):
        super().__init__(message, "HUB002", details)


# Configuration errors
class ConfigurationError(RelayError):
    """Configuration error"""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message, "CONFIG001", details)
