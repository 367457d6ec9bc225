"""City list and filesystem-safe city slugs."""

import json
import random
import re
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

DATA_DIR = Path(__file__).resolve().parent.parent / "data"

_NON_ALNUM = re.compile(r"[^a-z0-9]")


@lru_cache(maxsize=1)
def all_cities() -> List[str]:
    """Flattened list of every configured city, in file order."""
    with open(DATA_DIR / "cities.json", encoding="utf-8") as f:
        data = json.load(f)
    return [city for group in data["cities"].values() for city in group]


@lru_cache(maxsize=1)
def slug_table() -> Dict[str, str]:
    with open(DATA_DIR / "city_slugs.json", encoding="utf-8") as f:
        return json.load(f)


def pick_random_city(rng: Optional[random.Random] = None) -> str:
    """Uniform random draw from the city list."""
    return (rng or random).choice(all_cities())


def city_slug(city: str) -> str:
    """
    Map a city name to a lowercase ASCII slug.

    Exact table entries win, then the entry for the name with a 市 suffix.
    Otherwise non-alphanumerics are stripped from the lowercased name; a name
    with nothing left becomes "unknown".
    """
    table = slug_table()
    if city in table:
        return table[city]
    if f"{city}市" in table:
        return table[f"{city}市"]
    return _NON_ALNUM.sub("", city.lower()) or "unknown"
