# api/__init__.py
"""
API Routers

- chat: turns, streaming, sessions, health, quota, metrics
- nlu: query parsing
"""

from concierge.api.chat import router as chat_router
from concierge.api.nlu import router as nlu_router

__all__ = ["chat_router", "nlu_router"]
