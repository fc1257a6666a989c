"""Address clean-up and fallback query generation."""

import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

KNOWN_CITY_FALLBACKS = {
    "omer": "Omer, Israel",
    "ramot meir": "Ramot Meir, Israel",
    "tel aviv-yafo": "Tel Aviv, Israel",
    "tel aviv": "Tel Aviv, Israel",
    "jerusalem": "Jerusalem, Israel",
    "acre": "Acre, Israel",
    "haifa": "Haifa, Israel",
    "beer sheva": "Beer Sheva, Israel",
    "be'er sheva": "Beer Sheva, Israel",
    "rishon lezion": "Rishon LeZion, Israel",
    "netanya": "Netanya, Israel",
    "ashdod": "Ashdod, Israel",
    "bat yam": "Bat Yam, Israel",
    "petah tikva": "Petah Tikva, Israel",
    "ashkelon": "Ashkelon, Israel",
    "kfar saba": "Kfar Saba, Israel",
    "herzliya": "Herzliya, Israel",
    "hod hasharon": "Hod Hasharon, Israel",
    "ramat gan": "Ramat Gan, Israel",
    "rehovot": "Rehovot, Israel",
    "rosh haayin": "Rosh HaAyin, Israel",
    "eilat": "Eilat, Israel",
    "karmiel": "Karmiel, Israel",
    "kiryat ata": "Kiryat Ata, Israel",
    "kiryat bialik": "Kiryat Bialik, Israel",
}

# Localized spellings of the country that users type at the end of an address.
LOCALIZED_COUNTRY_NAMES = ("ישראל",)

_DIGITS = re.compile(r"\d+")
_WHITESPACE = re.compile(r"\s+")

ADDRESS_FIELDS: Dict[str, Sequence[str]] = {
    "users": ("address", "homeAddress"),
    "vets": ("address",),
    "businesses": ("contactInfo.address", "address"),
}
DEFAULT_ADDRESS_FIELDS: Sequence[str] = ("address",)


def normalize_address(raw: Any) -> Optional[str]:
    """Return the trimmed address, or None when there is nothing to geocode."""
    if not isinstance(raw, str):
        return None
    trimmed = raw.strip()
    return trimmed or None


def extract_address(document: Dict[str, Any], fields: Iterable[str]) -> Optional[str]:
    """Pick the first non-empty address among dotted field paths."""
    for path in fields:
        value: Any = document
        for key in path.split("."):
            if not isinstance(value, dict):
                value = None
                break
            value = value.get(key)
        address = normalize_address(value)
        if address:
            return address
    return None


def _strip_country(segment: str, country: str) -> str:
    names = [re.escape(name) for name in (country, *LOCALIZED_COUNTRY_NAMES) if name]
    if not names:
        return segment.strip()
    pattern = re.compile(r"(?<!\S)(?:%s)\s*$" % "|".join(names), re.IGNORECASE)
    return pattern.sub("", segment).strip()


def _comma_segments(address: str, min_length: int = 1) -> List[str]:
    return [part.strip() for part in address.split(",") if len(part.strip()) >= min_length]


def generate_fallback_addresses(address: str, country: str = "Israel") -> List[str]:
    """Build alternative geocoding queries for an address, most specific first."""
    trimmed = address.strip()
    if not trimmed:
        return []
    suffix = f", {country}"
    fallbacks: List[str] = []

    known_city = KNOWN_CITY_FALLBACKS.get(trimmed.lower())
    if known_city:
        fallbacks.append(known_city)

    parts = _comma_segments(trimmed)
    if parts:
        last_part = _strip_country(parts[-1], country)
        if len(last_part) > 2:
            fallbacks.append(last_part + suffix)
            if country.lower() not in last_part.lower():
                fallbacks.append(last_part)

    without_digits = _WHITESPACE.sub(" ", _DIGITS.sub("", trimmed)).strip()
    if without_digits != trimmed and len(without_digits) > 3:
        parts_no_digits = _comma_segments(without_digits, min_length=3)
        if parts_no_digits:
            last_part = _strip_country(parts_no_digits[-1], country)
            if len(last_part) > 2:
                fallbacks.append(last_part + suffix)

    words = trimmed.split()
    first_word = words[0]
    if len(first_word) > 2 and "," not in first_word:
        fallbacks.append(first_word + suffix)

    if len(words) <= 3 and "," not in trimmed:
        fallbacks.append(trimmed + suffix)

    if len(words) > 2:
        last_two = " ".join(words[-2:])
        if len(last_two) > 3:
            fallbacks.append(last_two + suffix)

    return list(dict.fromkeys(fallbacks))
