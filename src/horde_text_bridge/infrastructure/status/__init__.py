"""Status collaborator adapters."""

from horde_text_bridge.infrastructure.status.in_memory_status_board import InMemoryStatusBoard

__all__ = ["InMemoryStatusBoard"]
