from conduit.continuation.manager import ContinuationManager
from conduit.continuation.store import ContinuationStore

__all__ = ["ContinuationManager", "ContinuationStore"]
