# concierge/__init__.py
"""
Conversational Recommendation Concierge

Chat-driven media discovery service:
- Rule-based NLU (entity extraction + intent classification)
- Input/output safety filtering and audit redaction
- Capability workers (search, availability, preferences, recommendations)
- Recommendation scoring with series-aware diversity sampling
- Multi-turn sessions and per-tier daily quotas on a shared key-value store
- Request/response and Server-Sent Events transports
"""

__version__ = "1.0.0"

# Package structure:
# concierge/
# ├── __init__.py           <- This file
# ├── main.py               <- FastAPI application factory
# ├── config.py             <- Configuration settings
# ├── errors.py             <- Error codes and exceptions
# │
# ├── agents/               <- Orchestration
# │   ├── orchestrator.py   <- Per-turn pipeline
# │   ├── telemetry.py      <- Injected metrics aggregator
# │   └── workers/          <- search, availability, preferences, recommendations
# │
# ├── api/                  <- FastAPI Routers
# │   ├── chat.py           <- /api/ai/chat
# │   └── nlu.py            <- /api/ai/nlu/parse
# │
# ├── nlu/                  <- Entity extractor + intent classifier
# ├── safety/               <- Safety filters
# ├── algorithms/           <- Recommendation scorer
# ├── cache/                <- Search result cache
# ├── interfaces/           <- KV store, sessions, quota, catalog, search index, providers
# ├── llm/                  <- Optional generated reasoning
# └── schemas/              <- Pydantic models
