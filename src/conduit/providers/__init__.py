from conduit.providers.base import ProtocolAdapter, WireRequest
from conduit.providers.normalizer import Normalizer
from conduit.providers.registry import (
    ADAPTERS,
    available_providers,
    get_adapter,
    register_adapter,
)

__all__ = [
    "ADAPTERS",
    "Normalizer",
    "ProtocolAdapter",
    "WireRequest",
    "available_providers",
    "get_adapter",
    "register_adapter",
]
