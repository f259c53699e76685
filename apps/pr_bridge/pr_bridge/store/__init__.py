"""Store backends."""

from ..config import LANGGRAPH_URL, STORE_BACKEND
from ..protocol import RepositoryStore
from .langgraph import LangGraphStore
from .memory import InMemoryStore


def build_store(backend: str = STORE_BACKEND) -> RepositoryStore:
    """Create the store named by ``backend`` (``memory`` or ``langgraph``)."""
    if backend == "memory":
        return InMemoryStore()
    if backend == "langgraph":
        return LangGraphStore(url=LANGGRAPH_URL)
    msg = f"Unknown STORE_BACKEND: {backend}"
    raise ValueError(msg)


__all__ = ["InMemoryStore", "LangGraphStore", "build_store"]
