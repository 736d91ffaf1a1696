# agents/workers/availability_worker.py
"""
Availability worker: which services stream the named titles in a region.

Region comes from the message, then the conversation, then the default.
Services come from the message, then the caller's subscriptions. Lookups go
to the local catalog unless AVAILABILITY_SOURCE names an external provider.
"""

import re
from typing import Any, Dict, List, Optional

from loguru import logger

from concierge.agents.workers.base import WorkerDeps, WorkerInput, run_worker
from concierge.interfaces.availability_provider import AvailabilityProviderError
from concierge.nlu.entity_extractor import strip_entities
from concierge.schemas import AvailabilityResult, WorkerResult, WorkerType


NO_TITLES_MESSAGE = "No titles specified for availability check"

# "where can I watch Dune", "is Dune on Netflix", "where is Dune streaming"
TITLE_PHRASES = [
    re.compile(r"\bwhere\s+(?:can|could|do|should)\s+i\s+(?:watch|stream|find|see)\s+(?P<title>.+)$", re.IGNORECASE),
    re.compile(r"\b(?:is|are)\s+(?P<title>.+?)\s+(?:streaming|available|playing|on)\b", re.IGNORECASE),
    re.compile(r"\bwhere\s+(?:is|are)\s+(?P<title>.+?)\s+(?:streaming|available|playing)\b", re.IGNORECASE),
]
TRAILING_PUNCTUATION = re.compile(r"[\s?.!,]+$")
QUALIFIER_START = re.compile(r"\s(?:on|in)\s", re.IGNORECASE)


def _trim_qualifiers(candidate: str) -> str:
    """Drop a trailing 'on <service>' / 'in <region>' tail, keep the title intact"""
    candidate = TRAILING_PUNCTUATION.sub("", candidate).strip()
    for match in QUALIFIER_START.finditer(candidate):
        if not strip_entities(candidate[match.start():]):
            return candidate[:match.start()].strip()
    return candidate


def titles_from_phrasing(text: str) -> List[str]:
    """Recover an unquoted title from common availability phrasings"""
    for pattern in TITLE_PHRASES:
        match = pattern.search(text or "")
        if not match:
            continue
        title = _trim_qualifiers(match.group("title"))
        if title:
            return [title]
    return []


async def _lookup(
    name: str,
    region: str,
    services: Optional[List[str]],
    deps: WorkerDeps,
    resolved: List[Dict[str, Any]],
) -> Optional[List[AvailabilityResult]]:
    provider = deps.availability_provider
    if deps.config.AVAILABILITY_SOURCE != "LOCAL" and provider is not None:
        try:
            return await provider.lookup(name, region, services)
        except AvailabilityProviderError as e:
            logger.warning(f"Availability provider failed for {name!r}: {e}")
            return None

    title = await deps.catalog.find_title_by_name(name)
    if title is None:
        return None
    resolved.append(title.model_dump(mode="json", by_alias=True))
    return await deps.catalog.list_availability([title.id], region, services)


async def check_availability(worker_input: WorkerInput, deps: WorkerDeps) -> Dict[str, Any]:
    entities = worker_input.intent.entities
    snapshot = worker_input.context

    titles = entities.titles or titles_from_phrasing(worker_input.intent.raw_query)
    region = entities.region or snapshot.region or deps.config.DEFAULT_REGION
    services = entities.services or list(snapshot.subscriptions)
    source = deps.config.AVAILABILITY_SOURCE

    if not titles:
        return {
            "items": [],
            "message": NO_TITLES_MESSAGE,
            "region": region,
            "source": source,
            "servicesChecked": services,
        }

    items: List[AvailabilityResult] = []
    resolved: List[Dict[str, Any]] = []
    unresolved: List[str] = []
    for name in titles:
        rows = await _lookup(name, region, services or None, deps, resolved)
        if rows is None:
            unresolved.append(name)
            continue
        items.extend(rows)

    logger.info(f"Availability for {titles} in {region}: {len(items)} offers")
    return {
        "items": [a.model_dump(mode="json", by_alias=True) for a in items],
        "titles": resolved,
        "unresolved": unresolved,
        "region": region,
        "source": source,
        "servicesChecked": services,
    }


async def execute_availability(worker_input: WorkerInput, deps: WorkerDeps) -> WorkerResult:
    return await run_worker(WorkerType.AVAILABILITY, check_availability, worker_input, deps)
