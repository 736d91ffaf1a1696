# api/nlu.py
"""
NLU API Endpoint
Exposes entity extraction for search boxes: /api/ai/nlu/parse?q=
"""

from fastapi import APIRouter, Query, Request

from concierge.errors import ConciergeDisabledError, InvalidRequestError, NLUDisabledError
from concierge.nlu import extract_entities, strip_entities
from concierge.schemas import ErrorResponse, ParseResponse


router = APIRouter(prefix="/api/ai/nlu", tags=["nlu"])


@router.get(
    "/parse",
    response_model=ParseResponse,
    responses={400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def parse(request: Request, q: str = Query("")):
    """
    Parse a free-text query into entities

    Example:
        GET /api/ai/nlu/parse?q=funny sci-fi on Netflix
        -> {"originalQuery": ..., "cleanQuery": "", "entities": {"genres": [...], ...}}
    """
    config = request.app.state.services.config
    if not config.AI_CONCIERGE_ENABLED:
        raise ConciergeDisabledError()
    if not config.NLU_ENABLED:
        raise NLUDisabledError()
    if not q.strip():
        raise InvalidRequestError("Query parameter q is required")

    return ParseResponse(
        original_query=q,
        clean_query=strip_entities(q),
        entities=extract_entities(q).to_dict(),
    )
