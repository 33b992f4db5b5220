"""Field catalogue and header-to-field auto-mapping."""

import logging
from typing import Literal, Optional

from pydantic import BaseModel, Field
from rapidfuzz.distance import JaroWinkler

from .models import CANONICAL_FIELDS, ColumnDetectionResult, FieldMapping, RawRow
from .normalize import (
    is_valid_email,
    normalize_enum,
    normalize_header,
    parse_date,
    repair_url,
)

logger = logging.getLogger(__name__)

FieldKind = Literal["text", "date", "enum", "email", "url", "list"]

MIN_MAPPING_SCORE = 0.5
FUZZY_CEILING = 0.95
LOW_CONFIDENCE = 0.6
JARO_WINKLER_FLOOR = 0.88
HEADER_WEIGHT = 0.8
CONTENT_WEIGHT = 0.2
SNIFF_MATCH_RATIO = 0.8
SNIFF_CONFIDENCE_SCALE = 0.6
TEMPLATE_SUGGESTION_CONFIDENCE = 0.7


class FieldSpec(BaseModel):
    """How a canonical field is recognised and validated."""

    aliases: list[str]
    kind: FieldKind = "text"
    required: bool = False


FIELD_SPECS: dict[str, FieldSpec] = {
    "company": FieldSpec(
        aliases=[
            "company", "company name", "employer", "employer name", "organization",
            "organisation", "firm", "business", "şirket", "şirket adı", "firma", "firma adı",
        ],
        required=True,
    ),
    "position": FieldSpec(
        aliases=[
            "position", "job title", "title", "role", "job", "job role", "position title",
            "designation", "pozisyon", "meslek",
        ],
    ),
    "location": FieldSpec(
        aliases=[
            "location", "city", "country", "place", "region", "office", "address",
            "job location", "lokasyon", "şehir", "ülke",
        ],
    ),
    "type": FieldSpec(
        aliases=[
            "type", "job type", "employment type", "work type", "contract type",
            "employment", "tip", "iş türü", "çalışma türü",
        ],
        kind="enum",
    ),
    "salary": FieldSpec(
        aliases=[
            "salary", "compensation", "pay", "wage", "salary range", "expected salary",
            "salary estimate", "maaş", "ücret",
        ],
    ),
    "status": FieldSpec(
        aliases=[
            "status", "application status", "current status", "state", "stage",
            "durum", "başvuru durumu",
        ],
        kind="enum",
    ),
    "applied_date": FieldSpec(
        aliases=[
            "applied date", "date applied", "application date", "applied", "apply date",
            "submission date", "submit date", "başvuru tarihi",
        ],
        kind="date",
    ),
    "response_date": FieldSpec(
        aliases=[
            "response date", "reply date", "feedback date", "response", "cevap tarihi", "cevap",
        ],
        kind="date",
    ),
    "interview_date": FieldSpec(
        aliases=[
            "interview date", "interview", "meeting date", "screening date",
            "mülakat tarihi", "mülakat",
        ],
        kind="date",
    ),
    "notes": FieldSpec(
        aliases=["notes", "note", "comments", "comment", "remarks", "memo", "notlar", "açıklama", "yorum"],
    ),
    "contact_person": FieldSpec(
        aliases=[
            "contact person", "contact name", "contact", "recruiter", "recruiter name",
            "hiring manager", "iletişim kişisi", "kişi",
        ],
    ),
    "contact_email": FieldSpec(
        aliases=[
            "contact email", "email", "e mail", "email address", "recruiter email", "mail", "e posta",
        ],
        kind="email",
    ),
    "contact_phone": FieldSpec(
        aliases=["contact phone", "phone", "phone number", "telephone", "mobile", "telefon"],
    ),
    "website": FieldSpec(
        aliases=["website", "web site", "homepage", "site", "web"],
        kind="url",
    ),
    "tags": FieldSpec(
        aliases=[
            "tags", "tag", "labels", "skills", "keywords", "category", "sector",
            "etiketler", "sektör", "kategori",
        ],
        kind="list",
    ),
    "priority": FieldSpec(
        aliases=["priority", "importance", "rank", "öncelik"],
        kind="enum",
    ),
    "job_url": FieldSpec(
        aliases=[
            "job url", "job link", "posting url", "job posting", "url", "link",
            "application url", "ilan linki",
        ],
        kind="url",
    ),
    "job_description": FieldSpec(
        aliases=["job description", "description", "details", "job details", "iş tanımı"],
    ),
    "company_website": FieldSpec(
        aliases=["company website", "company url", "company site", "şirket web sitesi"],
        kind="url",
    ),
    "requirements": FieldSpec(
        aliases=["requirements", "qualifications", "required skills", "gereksinimler"],
        kind="list",
    ),
    "follow_up_date": FieldSpec(
        aliases=["follow up date", "follow up", "next follow up", "takip tarihi"],
        kind="date",
    ),
    "offer_date": FieldSpec(
        aliases=["offer date", "offer received", "teklif tarihi"],
        kind="date",
    ),
    "rejection_date": FieldSpec(
        aliases=["rejection date", "rejected date", "red tarihi"],
        kind="date",
    ),
}

FIELD_ORDER = {field: position for position, field in enumerate(CANONICAL_FIELDS)}

# Normalised alias -> field, for the exact pass.
_ALIAS_INDEX: dict[str, str] = {}
for _field in CANONICAL_FIELDS:
    for _alias in FIELD_SPECS[_field].aliases:
        _ALIAS_INDEX.setdefault(normalize_header(_alias), _field)


def fields_of_kind(kind: FieldKind) -> list[str]:
    return [field for field in CANONICAL_FIELDS if FIELD_SPECS[field].kind == kind]


def alias_score(header: str, alias: str) -> float:
    """Score a normalised header against one normalised alias."""
    if not header or not alias:
        return 0.0
    if header == alias:
        return 1.0

    header_tokens, alias_tokens = set(header.split()), set(alias.split())
    scores = [0.0]

    if header_tokens <= alias_tokens or alias_tokens <= header_tokens:
        smaller, larger = sorted((len(header_tokens), len(alias_tokens)))
        scores.append(0.55 + 0.35 * smaller / larger)
    elif (len(alias) >= 4 and alias in header) or (len(header) >= 4 and header in alias):
        smaller, larger = sorted((len(header), len(alias)))
        scores.append(0.5 + 0.3 * smaller / larger)

    overlap = len(header_tokens & alias_tokens) / len(header_tokens | alias_tokens)
    scores.append(0.8 * overlap)

    similarity = JaroWinkler.normalized_similarity(header, alias)
    if similarity >= JARO_WINKLER_FLOOR:
        scores.append(0.85 * similarity)

    return min(FUZZY_CEILING, max(scores))


def header_score(header: str, field: str) -> float:
    """Best alias score of a raw header for a field; 1.0 only for an exact alias."""
    normalised = normalize_header(header)
    if _ALIAS_INDEX.get(normalised) == field:
        return 1.0
    best = max(alias_score(normalised, normalize_header(a)) for a in FIELD_SPECS[field].aliases)
    return min(FUZZY_CEILING, best)


def _column_values(column: str, sample_rows: Optional[list[RawRow]]) -> list[str]:
    if not sample_rows:
        return []
    values = [str(row.get(column) or "").strip() for row in sample_rows]
    return [value for value in values if value]


def content_ratio(kind: FieldKind, values: list[str], field: Optional[str] = None) -> Optional[float]:
    """Share of sampled values that look like the given kind; None when not testable."""
    if not values:
        return None
    if kind == "date":
        hits = sum(1 for value in values if parse_date(value) is not None)
    elif kind == "email":
        hits = sum(1 for value in values if is_valid_email(value))
    elif kind == "url":
        hits = sum(1 for value in values if "@" not in value and repair_url(value) is not None)
    elif kind == "enum" and field is not None:
        hits = sum(1 for value in values if normalize_enum(field, value)[1])
    else:
        return None
    return hits / len(values)


def _blended_score(header: str, field: str, sample_rows: Optional[list[RawRow]]) -> float:
    score = header_score(header, field)
    if score >= 1.0:
        return score
    ratio = content_ratio(FIELD_SPECS[field].kind, _column_values(header, sample_rows), field)
    if ratio is None:
        return score
    return HEADER_WEIGHT * score + CONTENT_WEIGHT * ratio


def _sniff_content(
    headers: list[str],
    sample_rows: Optional[list[RawRow]],
    mapping: FieldMapping,
    confidence: dict[str, float],
) -> None:
    """Assign still-unmapped columns by what their values look like."""
    if not sample_rows:
        return
    mapped_columns = set(mapping.values())
    for header in headers:
        if header in mapped_columns:
            continue
        values = _column_values(header, sample_rows)
        for kind in ("date", "email", "url"):
            ratio = content_ratio(kind, values)
            if ratio is None or ratio < SNIFF_MATCH_RATIO:
                continue
            free = [field for field in fields_of_kind(kind) if field not in mapping]
            if free:
                field = free[0]
                mapping[field] = header
                confidence[field] = round(ratio * SNIFF_CONFIDENCE_SCALE, 4)
                mapped_columns.add(header)
                logger.debug(f"Content-sniffed column {header!r} as {field}")
            break


def _build_suggestions(headers: list[str], mapping: FieldMapping, confidence: dict[str, float]) -> list[str]:
    from .templates import detect_template

    suggestions = []
    for field in CANONICAL_FIELDS:
        if field in mapping and confidence[field] < LOW_CONFIDENCE:
            suggestions.append(
                f"Low confidence mapping for {field} ({mapping[field]!r}); please review"
            )

    if "company" not in mapping:
        suggestions.append("Company column not detected; map it manually before importing")

    unmapped = [header for header in headers if header not in mapping.values()]
    if unmapped:
        suggestions.append(f"Unmapped columns: {', '.join(unmapped)}")

    match = detect_template(headers)
    if match is not None and match.confidence > TEMPLATE_SUGGESTION_CONFIDENCE:
        suggestions.append(
            f"Detected {match.name} format with {round(match.confidence * 100)}% confidence"
        )
    elif confidence and sum(confidence.values()) / len(confidence) < TEMPLATE_SUGGESTION_CONFIDENCE:
        suggestions.append("Consider using a CSV template for more reliable column mapping")

    return suggestions


def detect_columns(
    headers: list[str],
    sample_rows: Optional[list[RawRow]] = None,
    fields: Optional[list[str]] = None,
) -> ColumnDetectionResult:
    """Propose a field -> column mapping with per-field confidence.

    Every (field, column) pair scoring at least MIN_MAPPING_SCORE is a
    candidate. Candidates are taken greedily by score, then canonical field
    order, then header order, so a field or column that loses a contest falls
    through to its next-best partner or stays unmapped.
    """
    fields = list(fields) if fields is not None else list(CANONICAL_FIELDS)
    candidates = []
    for header_position, header in enumerate(headers):
        for field in fields:
            score = _blended_score(header, field, sample_rows)
            if score >= MIN_MAPPING_SCORE:
                candidates.append((-score, FIELD_ORDER[field], header_position, field, header))
    candidates.sort()

    mapping: FieldMapping = {}
    confidence: dict[str, float] = {}
    taken: set[str] = set()
    for negative_score, _, _, field, header in candidates:
        if field in mapping or header in taken:
            continue
        mapping[field] = header
        confidence[field] = round(-negative_score, 4)
        taken.add(header)

    before_sniff = len(mapping)
    _sniff_content(headers, sample_rows, mapping, confidence)

    ordered = {field: mapping[field] for field in CANONICAL_FIELDS if field in mapping}
    ordered_confidence = {field: confidence[field] for field in ordered}
    logger.debug(
        f"Mapped {before_sniff} columns by header and {len(ordered) - before_sniff} by content"
    )

    return ColumnDetectionResult(
        mapping=ordered,
        confidence=ordered_confidence,
        suggestions=_build_suggestions(headers, ordered, ordered_confidence),
    )


def detect_columns_with_template(
    headers: list[str],
    template_id: str,
    sample_rows: Optional[list[RawRow]] = None,
) -> ColumnDetectionResult:
    """Start from a template's mapping and auto-detect whatever it leaves open."""
    from .templates import get_template, mapping_from_template

    template = get_template(template_id)
    if template is None:
        raise KeyError(f"Template not found: {template_id}")

    mapping, confidence = mapping_from_template(template_id, headers)
    remaining_headers = [header for header in headers if header not in mapping.values()]
    remaining_fields = [field for field in CANONICAL_FIELDS if field not in mapping]
    detected = detect_columns(remaining_headers, sample_rows, fields=remaining_fields)

    mapping.update(detected.mapping)
    confidence.update(detected.confidence)
    ordered = {field: mapping[field] for field in CANONICAL_FIELDS if field in mapping}

    suggestions = [f"Using the {template.name} template"]
    if "company" not in ordered:
        suggestions.append("Company column not detected; map it manually before importing")
    unmapped = [header for header in headers if header not in ordered.values()]
    if unmapped:
        suggestions.append(f"Unmapped columns: {', '.join(unmapped)}")

    return ColumnDetectionResult(
        mapping=ordered,
        confidence={field: confidence[field] for field in ordered},
        suggestions=suggestions,
    )


def field_suggestions(column: str, limit: int = 3) -> list[tuple[str, float]]:
    """Best-scoring canonical fields for a column, for manual mapping."""
    scored = [(field, round(header_score(column, field), 4)) for field in CANONICAL_FIELDS]
    scored = [item for item in scored if item[1] > 0]
    scored.sort(key=lambda item: (-item[1], FIELD_ORDER[item[0]]))
    return scored[:limit]
