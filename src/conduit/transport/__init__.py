from conduit.transport.base import Transport
from conduit.transport.http import HttpxTransport

__all__ = ["HttpxTransport", "Transport"]
