# nlu/entity_extractor.py
"""
Rule-based entity extraction for chat and search-bar queries.

Turns free text into ExtractedEntities:
- genres / services / moods via dictionary lookup (aliases allowed)
- duration ("under 2 hours" -> max 120, "over 90 min" -> min 90)
- release year ("from 2020" -> min, "before 1990" -> max)
- region (country names longest first, then ISO codes, then aliases)
- titles (quoted substrings, in order)

strip_entities() removes every phrase extract_entities() matched so the
remainder can be used as free search text.
"""

import re
from typing import Dict, List, Optional, Pattern, Tuple

from loguru import logger

from concierge.schemas import ExtractedEntities, RangeFilter


# ============================================
# Entity dictionaries
# ============================================

GENRE_MAP: Dict[str, str] = {
    "action": "Action",
    "adventure": "Adventure",
    "animation": "Animation",
    "animated": "Animation",
    "comedy": "Comedy",
    "comedies": "Comedy",
    "crime": "Crime",
    "documentary": "Documentary",
    "documentaries": "Documentary",
    "drama": "Drama",
    "dramas": "Drama",
    "family": "Family",
    "fantasy": "Fantasy",
    "history": "History",
    "horror": "Horror",
    "music": "Music",
    "mystery": "Mystery",
    "romance": "Romance",
    "sci-fi": "Science Fiction",
    "sci fi": "Science Fiction",
    "scifi": "Science Fiction",
    "science fiction": "Science Fiction",
    "thriller": "Thriller",
    "thrillers": "Thriller",
    "war": "War",
    "western": "Western",
    "westerns": "Western",
}

SERVICE_MAP: Dict[str, str] = {
    "netflix": "Netflix",
    "hulu": "Hulu",
    "disney": "Disney Plus",
    "disney+": "Disney Plus",
    "disney plus": "Disney Plus",
    "amazon": "Amazon Prime Video",
    "prime video": "Amazon Prime Video",
    "amazon prime": "Amazon Prime Video",
    "hbo": "HBO Max",
    "hbo max": "HBO Max",
    "apple tv": "Apple TV Plus",
    "apple tv+": "Apple TV Plus",
    "apple tv plus": "Apple TV Plus",
    "paramount": "Paramount Plus",
    "paramount+": "Paramount Plus",
    "paramount plus": "Paramount Plus",
    "peacock": "Peacock",
    "crunchyroll": "Crunchyroll",
}

MOOD_MAP: Dict[str, str] = {
    "funny": "comedy",
    "hilarious": "comedy",
    "scary": "horror",
    "creepy": "horror",
    "intense": "thriller",
    "romantic": "romance",
    "uplifting": "feel-good",
    "feel good": "feel-good",
    "feel-good": "feel-good",
    "dark": "dark",
    "lighthearted": "lighthearted",
    "light-hearted": "lighthearted",
    "suspenseful": "suspense",
    "emotional": "emotional",
    "epic": "epic",
    "nostalgic": "nostalgic",
    "cerebral": "cerebral",
    "mind-bending": "cerebral",
    "mind bending": "cerebral",
}

COUNTRY_NAMES: Dict[str, str] = {
    "united states of america": "US",
    "united states": "US",
    "united kingdom": "GB",
    "great britain": "GB",
    "canada": "CA",
    "australia": "AU",
    "new zealand": "NZ",
    "germany": "DE",
    "france": "FR",
    "spain": "ES",
    "italy": "IT",
    "netherlands": "NL",
    "ireland": "IE",
    "sweden": "SE",
    "norway": "NO",
    "denmark": "DK",
    "japan": "JP",
    "south korea": "KR",
    "korea": "KR",
    "india": "IN",
    "brazil": "BR",
    "mexico": "MX",
}

# Codes accepted only after "in" / "in the"; "in" and "it" are left out
ISO_CODES: Dict[str, str] = {
    "us": "US", "uk": "GB", "gb": "GB", "ca": "CA", "au": "AU", "nz": "NZ",
    "de": "DE", "fr": "FR", "es": "ES", "nl": "NL", "ie": "IE",
    "jp": "JP", "kr": "KR", "br": "BR", "mx": "MX",
}

REGION_ALIASES: Dict[str, str] = {
    "britain": "GB",
    "england": "GB",
    "scotland": "GB",
    "wales": "GB",
    "uk": "GB",
    "u.k.": "GB",
    "usa": "US",
    "u.s.": "US",
    "america": "US",
    "the states": "US",
}


# ============================================
# Patterns
# ============================================

_UNIT = r"(min(?:ute)?s?|hrs?|hours?)"
DURATION_MAX_PATTERN = re.compile(
    r"\b(?:under|less\s+than|shorter\s+than|within)\s+(\d+)\s*" + _UNIT + r"(?![a-z])",
    re.IGNORECASE,
)
DURATION_MIN_PATTERN = re.compile(
    r"\b(?:over|more\s+than|longer\s+than|at\s+least)\s+(\d+)\s*" + _UNIT + r"(?![a-z])",
    re.IGNORECASE,
)
YEAR_MIN_PATTERN = re.compile(r"\b(?:from|after|since)\s+(\d{4})\b", re.IGNORECASE)
YEAR_MAX_PATTERN = re.compile(r"\b(?:before|until|up\s+to)\s+(\d{4})\b", re.IGNORECASE)
QUOTED_PATTERN = re.compile(r'"([^"]+)"')
WHITESPACE = re.compile(r"\s+")

_REGION_PREFIX = r"(?:\bin\s+(?:the\s+)?)"


def _phrase_pattern(phrase: str, prefix: str = "") -> Pattern:
    """Case-insensitive, word-bounded pattern for a dictionary phrase"""
    body = r"\s+".join(re.escape(part) for part in phrase.split())
    return re.compile(rf"{prefix}(?<![\w+]){body}(?![\w+])", re.IGNORECASE)


def _longest_first(table: Dict[str, str]) -> List[Tuple[str, str]]:
    return sorted(table.items(), key=lambda item: len(item[0]), reverse=True)


# Compiled once: (pattern, canonical value), longest phrase first
_GENRE_PATTERNS = [(_phrase_pattern(k), v) for k, v in _longest_first(GENRE_MAP)]
_SERVICE_PATTERNS = [(_phrase_pattern(k), v) for k, v in _longest_first(SERVICE_MAP)]
_MOOD_PATTERNS = [(_phrase_pattern(k), v) for k, v in _longest_first(MOOD_MAP)]
_COUNTRY_PATTERNS = [(_phrase_pattern(k), v) for k, v in _longest_first(COUNTRY_NAMES)]
_ISO_PATTERNS = [(_phrase_pattern(k, prefix=_REGION_PREFIX), v) for k, v in ISO_CODES.items()]
_ALIAS_PATTERNS = [(_phrase_pattern(k), v) for k, v in _longest_first(REGION_ALIASES)]

# Strip variants also swallow the "on <service>" / "in the <country>" lead-ins
_SERVICE_STRIP = [_phrase_pattern(k, prefix=r"(?:\bon\s+)?") for k, _ in _longest_first(SERVICE_MAP)]
_COUNTRY_STRIP = [_phrase_pattern(k, prefix=_REGION_PREFIX + "?") for k, _ in _longest_first(COUNTRY_NAMES)]
_ALIAS_STRIP = [_phrase_pattern(k, prefix=_REGION_PREFIX + "?") for k, _ in _longest_first(REGION_ALIASES)]


# ============================================
# Extraction
# ============================================

def _mask(text: str, start: int, end: int) -> str:
    return text[:start] + " " * (end - start) + text[end:]


def _lookup(text: str, patterns: List[Tuple[Pattern, str]]) -> List[str]:
    """
    Find dictionary phrases in text.

    Longer phrases are matched first and masked so a shorter key cannot
    re-match inside them ("disney plus" vs "disney"). Returns canonical values
    de-duplicated in order of first appearance.
    """
    hits: List[Tuple[int, str]] = []
    working = text
    for pattern, value in patterns:
        for match in pattern.finditer(working):
            hits.append((match.start(), value))
            working = _mask(working, match.start(), match.end())

    ordered: List[str] = []
    for _, value in sorted(hits, key=lambda hit: hit[0]):
        if value not in ordered:
            ordered.append(value)
    return ordered


def _minutes(amount: str, unit: str) -> int:
    value = int(amount)
    if unit.lower().startswith("h"):
        return value * 60
    return value


def _extract_duration(text: str) -> Optional[RangeFilter]:
    max_match = DURATION_MAX_PATTERN.search(text)
    min_match = DURATION_MIN_PATTERN.search(text)
    if not max_match and not min_match:
        return None
    return RangeFilter(
        min=_minutes(*min_match.groups()) if min_match else None,
        max=_minutes(*max_match.groups()) if max_match else None,
    )


def _extract_release_year(text: str) -> Optional[RangeFilter]:
    min_match = YEAR_MIN_PATTERN.search(text)
    max_match = YEAR_MAX_PATTERN.search(text)
    if not min_match and not max_match:
        return None
    return RangeFilter(
        min=int(min_match.group(1)) if min_match else None,
        max=int(max_match.group(1)) if max_match else None,
    )


def resolve_region(text: str) -> Optional[str]:
    """
    Resolve a region code from text.

    Country names are tried first (longest first so "united kingdom" wins
    over a partial "united"), then ISO codes after "in"/"in the", then
    aliases such as "britain".
    """
    for group in (_COUNTRY_PATTERNS, _ISO_PATTERNS, _ALIAS_PATTERNS):
        for pattern, code in group:
            if pattern.search(text):
                return code
    return None


def extract_entities(text: str) -> ExtractedEntities:
    """
    Extract structured entities from a message.

    Args:
        text: Raw user text

    Returns:
        ExtractedEntities with only the matched fields set

    Example:
        >>> extract_entities('funny sci-fi on Netflix from 2020 under 2 hours').to_dict()
        {'genres': ['Science Fiction'], 'services': ['Netflix'], 'moods': ['comedy'],
         'duration': {'max': 120}, 'releaseYear': {'min': 2020}}
    """
    if not text or not text.strip():
        return ExtractedEntities()

    titles = QUOTED_PATTERN.findall(text)
    # Dictionary lookups ignore quoted titles ("The Dark Knight" is not a mood)
    unquoted = QUOTED_PATTERN.sub(" ", text)

    fields = {
        "genres": _lookup(unquoted, _GENRE_PATTERNS) or None,
        "services": _lookup(unquoted, _SERVICE_PATTERNS) or None,
        "moods": _lookup(unquoted, _MOOD_PATTERNS) or None,
        "duration": _extract_duration(unquoted),
        "release_year": _extract_release_year(unquoted),
        "region": resolve_region(unquoted),
        "titles": [t.strip() for t in titles if t.strip()] or None,
    }
    entities = ExtractedEntities(**fields)
    logger.debug(f"Extracted entities: {entities.to_dict()}")
    return entities


# ============================================
# Stripping
# ============================================

def strip_entities(text: str) -> str:
    """
    Remove every entity phrase from text and collapse whitespace.

    Phrases are replaced by a space (never joined) so no new words form.
    """
    if not text:
        return ""

    stripped = QUOTED_PATTERN.sub(" ", text)

    stripped = DURATION_MAX_PATTERN.sub(" ", stripped)
    stripped = DURATION_MIN_PATTERN.sub(" ", stripped)
    stripped = YEAR_MIN_PATTERN.sub(" ", stripped)
    stripped = YEAR_MAX_PATTERN.sub(" ", stripped)

    for pattern in _SERVICE_STRIP:
        stripped = pattern.sub(" ", stripped)
    for pattern in _COUNTRY_STRIP:
        stripped = pattern.sub(" ", stripped)
    for pattern, _ in _ISO_PATTERNS:
        stripped = pattern.sub(" ", stripped)
    for pattern in _ALIAS_STRIP:
        stripped = pattern.sub(" ", stripped)
    for pattern, _ in _GENRE_PATTERNS + _MOOD_PATTERNS:
        stripped = pattern.sub(" ", stripped)

    return WHITESPACE.sub(" ", stripped).strip()
