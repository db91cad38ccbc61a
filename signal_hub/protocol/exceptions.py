"""
Signal Hub Exceptions

Error taxonomy for the signaling protocol
"""

from typing import Optional


class SignalingError(Exception):
    """Base signaling exception"""

    def __init__(
        self, message: str, error_code: str = "SIG000", details: Optional[dict] = None
    ):
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


class ValidationError(SignalingError):
    """Required fields missing or empty"""

    def __init__(
        self, message: str = "Room and peerId are required", details: dict = None
    ):
        super().__init__(message, "SIG001", details)


class ParseError(SignalingError):
    """Frame is not a well-formed JSON object"""

    def __init__(self, message: str = "Invalid JSON message", details: dict = None):
        super().__init__(message, "SIG002", details)


class UnknownTypeError(SignalingError):
    """Message type not recognized"""

    def __init__(self, message_type, details: dict = None):
        super().__init__(f"Unknown message type: {message_type}", "SIG003", details)
        self.message_type = message_type


class DeliveryFailure(SignalingError):
    """Relay target not found or its connection is not open"""

    def __init__(self, target_peer: str, details: dict = None):
        super().__init__(
            f"Target peer {target_peer} not found or disconnected", "SIG004", details
        )
        self.target_peer = target_peer


class TransportFailure(SignalingError):
    """Connection-level error or close"""

    def __init__(self, message: str = "Connection closed", details: dict = None):
        super().__init__(message, "SIG005", details)
