"""Name normalization for matching and deduplication.

Hey future me - the ticketing upstream and the music catalog spell the same act
differently all the time: "Beyonce" vs "Beyoncé", "Simon & Garfunkel" vs "Simon and
Garfunkel", "Marina and the Diamonds" vs "MARINA". Everything that compares names
(artist matching, song dedup, played-setlist matching) goes through here so they all
agree on what "the same name" means.

Examples:
    >>> normalize_name("Beyoncé")
    'beyonce'
    >>> normalize_name("AC/DC")
    'acdc'
    >>> normalize_name("  Simon   &  Garfunkel ")
    'simon & garfunkel'
    >>> canonical_form("Simon and Garfunkel") == canonical_form("Simon & Garfunkel")
    True
"""

import re
import unicodedata

# Token -> canonical token. Applied word by word AFTER normalize_name.
ABBREVIATIONS: dict[str, str] = {
    "&": "and",
    "n": "and",
    "ft": "featuring",
    "feat": "featuring",
    "featuring": "featuring",
    "vs": "versus",
    "versus": "versus",
}

# Keeps word chars, whitespace and "&" (it carries meaning in band names)
_STRIP_PUNCTUATION = re.compile(r"[^\w\s&]", re.UNICODE)
_WHITESPACE = re.compile(r"\s+")
# "Song (Remastered 2011)" / "Song - Live at Wembley" must collapse onto "song"
_VERSION_SUFFIX = re.compile(
    r"\s*(\(|\[|-\s)[^)\]]*"
    r"(remaster|live|version|edit|mix|mono|stereo|demo|acoustic)"
    r"[^)\]]*(\)|\])?\s*$",
    re.IGNORECASE,
)


def _strip_accents(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_name(value: str | None) -> str:
    """Lowercase, strip accents and punctuation (keeping "&"), collapse whitespace."""
    if not value:
        return ""
    result = _strip_accents(value).lower()
    result = _STRIP_PUNCTUATION.sub("", result)
    return _WHITESPACE.sub(" ", result).strip()


def name_key(value: str | None) -> str:
    """Case-insensitive lookup key that keeps accents and punctuation.

    Unicode-aware, unlike SQL lower(): "ÓLAFUR ARNALDS" and "Ólafur Arnalds" share a key.
    """
    if not value:
        return ""
    return _WHITESPACE.sub(" ", unicodedata.normalize("NFC", value)).strip().casefold()


def canonical_form(value: str | None) -> str:
    """normalize_name plus abbreviation expansion, word by word."""
    words = normalize_name(value).split(" ")
    return " ".join(ABBREVIATIONS.get(word, word) for word in words if word)


def normalize_title(value: str | None) -> str:
    """Song/album normalization for dedup: drops remaster/live/version suffixes too."""
    if not value:
        return ""
    stripped = _VERSION_SUFFIX.sub("", value)
    # Never normalize a title away completely ("(Live)" as the whole title)
    return normalize_name(stripped) or normalize_name(value)
