"""Protocol client interface and the Matrix HTTP adapter."""

from meetings.protocol.base import ProtocolClient
from meetings.protocol.matrix import MatrixClient

__all__ = ["MatrixClient", "ProtocolClient"]
