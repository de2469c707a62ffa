"""Serial transport and SAM-BA monitor protocol layer."""

from .serial_transport import (
    SerialTransport,
    TransportError,
    TransportTimeout,
)
from .samba import (
    SamBA,
    Mode,
    ProtocolError,
    SamBAUnresponsive,
    SamBAMalformed,
)

__all__ = [
    # Transport
    "SerialTransport",
    "TransportError",
    "TransportTimeout",
    # SAM-BA
    "SamBA",
    "Mode",
    "ProtocolError",
    "SamBAUnresponsive",
    "SamBAMalformed",
]
