from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True, slots=True)
class Country:
    code: str
    name: str
    flag: str

    def as_dict(self) -> Dict[str, str]:
        return {"code": self.code, "name": self.name, "flag": self.flag}


GENDERS: Tuple[str, ...] = ("Male", "Female")

COUNTRIES: Tuple[Country, ...] = (
    Country("US", "United States", "\U0001F1FA\U0001F1F8"),
    Country("GB", "United Kingdom", "\U0001F1EC\U0001F1E7"),
    Country("CA", "Canada", "\U0001F1E8\U0001F1E6"),
    Country("AU", "Australia", "\U0001F1E6\U0001F1FA"),
    Country("DE", "Germany", "\U0001F1E9\U0001F1EA"),
    Country("FR", "France", "\U0001F1EB\U0001F1F7"),
    Country("JP", "Japan", "\U0001F1EF\U0001F1F5"),
    Country("IN", "India", "\U0001F1EE\U0001F1F3"),
    Country("BR", "Brazil", "\U0001F1E7\U0001F1F7"),
    Country("PK", "Pakistan", "\U0001F1F5\U0001F1F0"),
    Country("NG", "Nigeria", "\U0001F1F3\U0001F1EC"),
    Country("RU", "Russia", "\U0001F1F7\U0001F1FA"),
    Country("MX", "Mexico", "\U0001F1F2\U0001F1FD"),
    Country("ID", "Indonesia", "\U0001F1EE\U0001F1E9"),
    Country("TR", "Turkey", "\U0001F1F9\U0001F1F7"),
)

_BY_CODE: Dict[str, Country] = {c.code: c for c in COUNTRIES}

# Canned lines posted by synthetic participants.
CANNED_LINES: Tuple[str, ...] = (
    "Just joined this awesome chat! \U0001F44B",
    "Anyone here from Asia? \U0001F30F",
    "What's everyone talking about? \U0001F4AC",
    "This platform is so fast! ⚡",
    "Nice to meet you all! \U0001F91D",
    "Working from home today \U0001F4BB",
    "The weather is beautiful ☀️",
    "Any music recommendations? \U0001F3B5",
    "Just had coffee ☕",
    "Good morning/evening everyone! \U0001F319",
)


def country_by_code(code: Optional[str]) -> Optional[Country]:
    if not code:
        return None
    return _BY_CODE.get(code.upper())


def countries_payload() -> List[Dict[str, str]]:
    """Reference list served at ``/api/countries``."""

    return [c.as_dict() for c in COUNTRIES]


__all__ = [
    "Country",
    "GENDERS",
    "COUNTRIES",
    "CANNED_LINES",
    "country_by_code",
    "countries_payload",
]
