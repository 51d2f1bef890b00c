"""Horde queue infrastructure adapters."""

from horde_text_bridge.infrastructure.horde.client import HordeClient

__all__ = ["HordeClient"]
