import re
from functools import lru_cache

from rapidfuzz import fuzz

UNKNOWN_MERCHANT = "unknown"

_WEB_SUFFIX = re.compile(r"\b(www\.)|\.(com|net|org|sa|co|io|ae)\b", re.IGNORECASE)
_PUNCTUATION = re.compile(r"[^\w\s]")
_DIGITS = re.compile(r"\d+")
_WHITESPACE = re.compile(r"\s+")

_BRANCH_WORDS = ("branch", "br", "outlet", "location", "فرع")
# Generic words that are only noise when a branch or terminal number follows
_NUMBERED_WORDS = ("store", "shop", "no", "pos", "متجر")
_LOCATION_WORDS = (
    "riyadh", "jeddah", "jedda", "dammam", "khobar", "alkhobar", "makkah", "mecca",
    "madinah", "medina", "taif", "tabuk", "abha", "qassim", "buraydah", "hail",
    "jubail", "yanbu", "ksa", "saudi", "arabia", "sa",
    "الرياض", "جدة", "الدمام", "الخبر", "مكة", "المدينة",
)
_LEGAL_SUFFIXES = (
    "ltd", "limited", "llc", "inc", "co", "corp", "company", "est", "plc", "online",
    "شركة", "مؤسسة",
)

_NUMBERED_NOISE = re.compile(
    r"\b(" + "|".join(_NUMBERED_WORDS) + r")\s+(no\s+)?\d+\b",
    re.IGNORECASE,
)
_NOISE_WORDS = re.compile(
    r"\b(" + "|".join(_BRANCH_WORDS + _LOCATION_WORDS + _LEGAL_SUFFIXES) + r")\b",
    re.IGNORECASE,
)


@lru_cache(maxsize=2048)
def normalize_merchant(raw_name: str | None) -> str:
    """
    Canonical merchant key: lowercase, no web suffix, punctuation, digits,
    branch/location words or legal suffixes, single-spaced.

    "PANDA HYPERMARKET RIYADH" and "Panda Hypermarket - Branch 123" both
    become "panda hypermarket". Returns "unknown" when nothing is left.
    """
    if not raw_name:
        return UNKNOWN_MERCHANT

    name = raw_name.strip().lower()
    name = _WEB_SUFFIX.sub(" ", name)
    name = _PUNCTUATION.sub(" ", name)
    name = name.replace("_", " ")
    name = _NUMBERED_NOISE.sub(" ", name)
    name = _DIGITS.sub(" ", name)
    name = _NOISE_WORDS.sub(" ", name)
    name = _WHITESPACE.sub(" ", name).strip()
    return name or UNKNOWN_MERCHANT


def similarity(first: str, second: str) -> float:
    """Token-order insensitive similarity of two normalized names, 0.0 to 1.0."""
    if first == second:
        return 1.0
    if not first or not second:
        return 0.0
    return fuzz.token_sort_ratio(first, second) / 100.0


def alternative_names(merchant_name: str) -> list[str]:
    """Spelling variants a bank might use for the same merchant."""
    name = merchant_name.lower().strip()
    candidates = [
        name.replace(" ", ""),
        name.replace("-", " "),
        name.replace("&", "and"),
    ]
    words = name.split()
    if len(words) > 1:
        candidates.append(" ".join(word[:3] for word in words))

    result: list[str] = []
    for candidate in candidates:
        if candidate and candidate != name and candidate not in result:
            result.append(candidate)
    return result


def display_name(raw_name: str) -> str:
    normalized = normalize_merchant(raw_name)
    if normalized == UNKNOWN_MERCHANT:
        return "Unknown merchant"
    return normalized.title()
