"""Value parsing and normalisation shared by the validator and the converter."""

import re
from datetime import date, datetime
from typing import Any, Optional
from urllib.parse import urlparse

from rapidfuzz import process
from rapidfuzz.distance import JaroWinkler

from .models import JOB_TYPES, PRIORITIES, STATUSES

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
BARE_DOMAIN_REGEX = re.compile(r"^(www\.)?[a-z0-9-]+(\.[a-z0-9-]+)+(/\S*)?$", re.IGNORECASE)
LIST_SPLIT_REGEX = re.compile(r"[;,|]")
NUMERIC_DATE_REGEX = re.compile(r"^(\d{1,2})[/.-](\d{1,2})[/.-](\d{2}|\d{4})$")

NAMED_MONTH_FORMATS = (
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%d-%b-%Y",
    "%b. %d, %Y",
)

# Checked in order; first keyword found in the lower-cased value wins.
STATUS_KEYWORDS = [
    # Applicant turned the offer down.
    ("declined offer", "Withdrawn"),
    ("declined the offer", "Withdrawn"),
    ("offer declined", "Withdrawn"),
    ("withdraw", "Withdrawn"),
    ("geri çektim", "Withdrawn"),
    ("iptal", "Withdrawn"),
    ("reject", "Rejected"),
    ("declin", "Rejected"),
    ("not selected", "Rejected"),
    ("reddedildi", "Rejected"),
    ("accept", "Accepted"),
    ("kabul ettim", "Accepted"),
    ("onayladım", "Accepted"),
    ("offer", "Offered"),
    ("teklif", "Offered"),
    ("interview", "Interviewing"),
    ("screen", "Interviewing"),
    ("mülakat", "Interviewing"),
    ("görüşme", "Interviewing"),
    ("applied", "Applied"),
    ("apply", "Applied"),
    ("submitted", "Applied"),
    ("sent", "Applied"),
    ("başvuru yapıldı", "Applied"),
    ("başvuruldu", "Applied"),
    ("pending", "Pending"),
    ("waiting", "Pending"),
    ("planned", "Pending"),
    ("saved", "Pending"),
    ("wishlist", "Pending"),
    ("beklemede", "Pending"),
    ("cevap bekleniyor", "Pending"),
    ("planlanıyor", "Pending"),
]

TYPE_KEYWORDS = [
    ("part", "Part-time"),
    ("intern", "Internship"),
    ("staj", "Internship"),
    ("co-op", "Internship"),
    ("contract", "Contract"),
    ("temporary", "Contract"),
    ("temp", "Contract"),
    ("freelance", "Freelance"),
    ("self-employed", "Freelance"),
    ("full", "Full-time"),
    ("permanent", "Full-time"),
    ("tam zamanlı", "Full-time"),
]

PRIORITY_KEYWORDS = [
    ("high", "High"),
    ("urgent", "High"),
    ("top", "High"),
    ("yüksek", "High"),
    ("medium", "Medium"),
    ("normal", "Medium"),
    ("mid", "Medium"),
    ("orta", "Medium"),
    ("low", "Low"),
    ("düşük", "Low"),
]

ENUM_VALUES = {
    "status": (STATUSES, STATUS_KEYWORDS, "Pending"),
    "type": (JOB_TYPES, TYPE_KEYWORDS, "Full-time"),
    "priority": (PRIORITIES, PRIORITY_KEYWORDS, "Medium"),
}

FUZZY_ENUM_CUTOFF = 0.85

# Country names in English, Turkish and the local language, keyed lower-case.
COUNTRY_NAMES = {
    "sweden": "Sweden",
    "isveç": "Sweden",
    "sverige": "Sweden",
    "norway": "Norway",
    "norveç": "Norway",
    "norge": "Norway",
    "denmark": "Denmark",
    "danimarka": "Denmark",
    "danmark": "Denmark",
    "germany": "Germany",
    "almanya": "Germany",
    "deutschland": "Germany",
    "france": "France",
    "fransa": "France",
    "netherlands": "Netherlands",
    "hollanda": "Netherlands",
    "nederland": "Netherlands",
    "the netherlands": "Netherlands",
    "united kingdom": "United Kingdom",
    "uk": "United Kingdom",
    "england": "United Kingdom",
    "ingiltere": "United Kingdom",
}

SECTOR_POSITIONS = [
    (("fintech", "finance"), "Finance Intern"),
    (("technology", "tech", "software"), "Software Developer Intern"),
    (("music", "media"), "Media Intern"),
    (("telecom", "automotive", "engineering"), "Engineering Intern"),
    (("retail", "design"), "Design Intern"),
    (("gaming", "game"), "Game Developer Intern"),
    (("energy", "renewable"), "Energy Intern"),
    (("maritime", "logistics"), "Logistics Intern"),
    (("pharmaceuticals", "medical"), "Medical Intern"),
    (("cybersecurity", "security"), "Security Intern"),
]


def _expand_year(year: str) -> int:
    value = int(year)
    if len(year) == 2:
        value += 2000
    return value


def parse_date(value: Any, day_first: bool = False) -> Optional[date]:
    """Parse a date cell; returns None when no accepted format matches."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None

    if re.match(r"^\d{4}-\d{2}-\d{2}", text):
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None

    match = NUMERIC_DATE_REGEX.match(text)
    if match:
        first, second, year = int(match.group(1)), int(match.group(2)), _expand_year(match.group(3))
        if first > 12:
            day, month = first, second
        elif second > 12:
            month, day = first, second
        elif day_first or "." in text:
            day, month = first, second
        else:
            month, day = first, second
        try:
            return date(year, month, day)
        except ValueError:
            return None

    slash_iso = re.match(r"^(\d{4})/(\d{1,2})/(\d{1,2})$", text)
    if slash_iso:
        try:
            return date(int(slash_iso.group(1)), int(slash_iso.group(2)), int(slash_iso.group(3)))
        except ValueError:
            return None

    for fmt in NAMED_MONTH_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def normalize_enum(field: str, value: Any) -> tuple[str, bool]:
    """Map a free-text enum cell onto its canonical value.

    Returns ``(value, matched)``; when nothing matches, the field default is
    returned with ``matched`` False.
    """
    canonical, keywords, default = ENUM_VALUES[field]
    text = str(value or "").strip()
    if not text:
        return default, False

    lowered = text.lower()
    for option in canonical:
        if option.lower() == lowered:
            return option, True

    for keyword, option in keywords:
        if keyword in lowered:
            return option, True

    best = process.extractOne(
        lowered,
        [option.lower() for option in canonical],
        scorer=JaroWinkler.normalized_similarity,
        score_cutoff=FUZZY_ENUM_CUTOFF,
    )
    if best is not None:
        return canonical[best[2]], True

    return default, False


def split_list(value: Any) -> list[str]:
    """Split a tags/requirements cell on ``;``, ``,`` or ``|``."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = [str(item).strip() for item in value]
    else:
        items = [item.strip() for item in LIST_SPLIT_REGEX.split(str(value))]
    return [item for item in items if item]


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_REGEX.match(value.strip()))


def is_valid_url(value: str) -> bool:
    try:
        parsed = urlparse(value.strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and "." in parsed.netloc


def repair_url(value: str) -> Optional[str]:
    """Add a missing ``https://`` to a bare domain; None when not repairable."""
    text = value.strip()
    if is_valid_url(text):
        return text
    if BARE_DOMAIN_REGEX.match(text):
        return f"https://{text}"
    return None


def clean_email(value: str) -> Optional[str]:
    """Strip a ``mailto:`` prefix and inner spaces; None when still not an address."""
    cleaned = re.sub(r"\s+", "", re.sub(r"^mailto:", "", value.strip(), flags=re.IGNORECASE)).lower()
    return cleaned if is_valid_email(cleaned) else None


def _location_key(value: str) -> str:
    return value.replace("İ", "i").strip().lower()


def _capitalize(part: str) -> str:
    if not part.islower():
        return part
    if len(part) <= 2:
        return part.upper()
    return " ".join(word[:1].upper() + word[1:] for word in part.split())


def standardize_location(value: str) -> str:
    """Translate country names to English and capitalise all-lowercase parts.

    Each comma-separated part is handled on its own, so "stockholm, isveç"
    becomes "Stockholm, Sweden" and two-letter parts such as "ca" become
    region codes.
    """
    parts = [part.strip() for part in value.split(",")]
    parts = [_capitalize(COUNTRY_NAMES.get(_location_key(part), part)) for part in parts]
    return ", ".join(part for part in parts if part)


def position_from_sector(sector: str) -> str:
    """Guess an internship title from a sector or tags cell."""
    lowered = sector.lower()
    for keywords, title in SECTOR_POSITIONS:
        if any(keyword in lowered for keyword in keywords):
            return title
    first = split_list(sector)
    return f"{first[0] if first else sector.strip()} Intern"


def normalize_text(value: Any) -> str:
    """Lower-case, strip punctuation and collapse whitespace for comparisons."""
    text = re.sub(r"[^\w\s]", " ", str(value or "").lower())
    return re.sub(r"\s+", " ", text).strip()


def normalize_header(header: Any) -> str:
    """Normalise a CSV header: split camelCase, drop punctuation, lower-case."""
    text = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", str(header or ""))
    text = re.sub(r"[\W_]+", " ", text.lower())
    return re.sub(r"\s+", " ", text).strip()
