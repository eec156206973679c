"""City or district name to Peruvian region (departamento)."""

import re
import unicodedata
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

import yaml

_REGIONS_FILE = Path(__file__).resolve().parent.parent / "data" / "regions.yaml"

# Shorter inputs only match exactly; "LA" would otherwise hit half the country.
MIN_PARTIAL_LENGTH = 4


def normalize_place(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", (text or "").upper())
    plain = "".join(char for char in decomposed if not unicodedata.combining(char))
    return " ".join(re.sub(r"[^A-Z0-9]+", " ", plain).split())


@lru_cache(maxsize=1)
def load_regions() -> Dict[str, List[str]]:
    with open(_REGIONS_FILE, encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return {
        normalize_place(region): [normalize_place(city) for city in cities or []]
        for region, cities in data.items()
    }


def _has_words(text: str, words: str) -> bool:
    return f" {words} " in f" {text} "


def detect_region(city: str) -> Optional[str]:
    """Region for a typed city; exact matches win over partial and prefix matches."""
    place = normalize_place(city)
    if not place:
        return None
    regions = load_regions()

    for region, cities in regions.items():
        if place == region or place in cities:
            return region

    if len(place) < MIN_PARTIAL_LENGTH:
        return None

    for region, cities in regions.items():
        if any(_has_words(place, known) or place in known for known in cities):
            return region

    for region, cities in regions.items():
        if any(known.startswith(place) or place.startswith(known[:MIN_PARTIAL_LENGTH]) for known in cities):
            return region
    return None
