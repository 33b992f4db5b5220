"""CSV templates for known job-board export layouts."""

import csv
import io
import logging
import re
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

from .fields import FIELD_SPECS
from .models import CANONICAL_FIELDS, Application, ConfidenceMap, FieldMapping
from .normalize import normalize_header

logger = logging.getLogger(__name__)

TemplateSource = Literal["linkedin", "indeed", "glassdoor", "custom"]

PARTIAL_MATCH_WEIGHT = 0.7
PARTIAL_MATCH_CONFIDENCE = 0.7
VARIATION_MATCH_CONFIDENCE = 0.5
LIST_JOINER = "; "


class TemplateColumn(BaseModel):
    column: str
    field: str
    required: bool = False


class CSVTemplate(BaseModel):
    """A known CSV layout: column names, the fields they hold, and sample rows."""

    id: str
    name: str
    description: str
    source: TemplateSource = "custom"
    columns: list[TemplateColumn]
    # Keyed by canonical field so samples stay aligned with the columns.
    sample_rows: list[dict[str, str]] = Field(default_factory=list)

    @property
    def headers(self) -> list[str]:
        return [c.column for c in self.columns]

    @property
    def mapping(self) -> FieldMapping:
        return {c.field: c.column for c in self.columns}


class TemplateMatch(BaseModel):
    template_id: str
    name: str
    confidence: float
    matched_fields: int


def _columns(*specs: tuple[str, str]) -> list[TemplateColumn]:
    return [
        TemplateColumn(column=column, field=field, required=field in ("company", "position"))
        for column, field in specs
    ]


TEMPLATES: dict[str, CSVTemplate] = {
    "linkedin": CSVTemplate(
        id="linkedin",
        name="LinkedIn Export",
        description="Standard format for LinkedIn job application exports",
        source="linkedin",
        columns=_columns(
            ("Company", "company"),
            ("Position", "position"),
            ("Location", "location"),
            ("Applied Date", "applied_date"),
            ("Status", "status"),
            ("Notes", "notes"),
        ),
        sample_rows=[
            {"company": "Google", "position": "Software Engineer", "location": "Mountain View, CA",
             "applied_date": "2024-01-15", "status": "Applied", "notes": "Applied via LinkedIn"},
            {"company": "Microsoft", "position": "Product Manager", "location": "Seattle, WA",
             "applied_date": "2024-01-20", "status": "Interviewing", "notes": "Phone screen completed"},
            {"company": "Apple", "position": "iOS Developer", "location": "Cupertino, CA",
             "applied_date": "2024-01-25", "status": "Pending", "notes": "Waiting for response"},
        ],
    ),
    "indeed": CSVTemplate(
        id="indeed",
        name="Indeed Format",
        description="Format compatible with Indeed job applications",
        source="indeed",
        columns=_columns(
            ("Company Name", "company"),
            ("Job Title", "position"),
            ("Location", "location"),
            ("Date Applied", "applied_date"),
            ("Application Status", "status"),
            ("Salary", "salary"),
            ("Job Type", "type"),
        ),
        sample_rows=[
            {"company": "Apple", "position": "iOS Developer", "location": "Cupertino, CA",
             "applied_date": "2024-01-15", "status": "Applied", "salary": "$120,000", "type": "Full-time"},
            {"company": "Netflix", "position": "Data Scientist", "location": "Los Gatos, CA",
             "applied_date": "2024-01-20", "status": "Pending", "salary": "$140,000", "type": "Full-time"},
            {"company": "Tesla", "position": "Software Engineer", "location": "Palo Alto, CA",
             "applied_date": "2024-01-25", "status": "Interviewing", "salary": "$110,000", "type": "Full-time"},
        ],
    ),
    "glassdoor": CSVTemplate(
        id="glassdoor",
        name="Glassdoor Format",
        description="Format for Glassdoor job applications",
        source="glassdoor",
        columns=_columns(
            ("Employer", "company"),
            ("Job Title", "position"),
            ("Location", "location"),
            ("Date Applied", "applied_date"),
            ("Status", "status"),
            ("Salary Estimate", "salary"),
        ),
        sample_rows=[
            {"company": "Tesla", "position": "Software Engineer", "location": "Palo Alto, CA",
             "applied_date": "2024-01-15", "status": "Applied", "salary": "$110,000-130,000"},
            {"company": "Spotify", "position": "Backend Engineer", "location": "Stockholm, Sweden",
             "applied_date": "2024-01-20", "status": "Interviewing", "salary": "45,000 SEK/month"},
            {"company": "Airbnb", "position": "Product Designer", "location": "San Francisco, CA",
             "applied_date": "2024-01-25", "status": "Pending", "salary": "$130,000-150,000"},
        ],
    ),
    "custom": CSVTemplate(
        id="custom",
        name="Complete Template",
        description="Comprehensive template with all available fields",
        source="custom",
        columns=_columns(
            ("Company", "company"),
            ("Position", "position"),
            ("Location", "location"),
            ("Type", "type"),
            ("Salary", "salary"),
            ("Status", "status"),
            ("Applied Date", "applied_date"),
            ("Response Date", "response_date"),
            ("Interview Date", "interview_date"),
            ("Offer Date", "offer_date"),
            ("Rejection Date", "rejection_date"),
            ("Notes", "notes"),
            ("Job Description", "job_description"),
            ("Requirements", "requirements"),
            ("Contact Person", "contact_person"),
            ("Contact Email", "contact_email"),
            ("Contact Phone", "contact_phone"),
            ("Website", "website"),
            ("Job URL", "job_url"),
            ("Company Website", "company_website"),
            ("Tags", "tags"),
            ("Priority", "priority"),
            ("Follow Up Date", "follow_up_date"),
        ),
        sample_rows=[
            {"company": "Spotify", "position": "Software Engineer Intern", "location": "Stockholm, Sweden",
             "type": "Internship", "salary": "15,000 SEK/month", "status": "Applied",
             "applied_date": "2024-01-15", "notes": "Applied through LinkedIn",
             "requirements": "Python; Distributed systems", "contact_person": "Sarah Johnson",
             "contact_email": "careers@spotify.com", "website": "https://spotify.com/careers",
             "job_url": "https://spotify.com/careers/jobs/1234", "company_website": "https://spotify.com",
             "tags": "Backend; Music; Sweden", "priority": "High", "follow_up_date": "2024-01-29"},
            {"company": "Klarna", "position": "Data Scientist", "location": "Stockholm, Sweden",
             "type": "Full-time", "salary": "45,000 SEK/month", "status": "Interviewing",
             "applied_date": "2024-01-20", "response_date": "2024-01-24", "interview_date": "2024-02-01",
             "notes": "Technical round scheduled", "contact_person": "Marcus Andersson",
             "contact_email": "careers@klarna.com", "contact_phone": "+46 8 120 120 00",
             "website": "https://klarna.com/careers", "tags": "Data Science; Fintech", "priority": "Medium"},
        ],
    ),
    "minimal": CSVTemplate(
        id="minimal",
        name="Minimal Template",
        description="Simple template with only essential fields",
        source="custom",
        columns=_columns(
            ("Company", "company"),
            ("Position", "position"),
            ("Status", "status"),
            ("Applied Date", "applied_date"),
        ),
        sample_rows=[
            {"company": "Google", "position": "Software Engineer", "status": "Applied", "applied_date": "2024-01-15"},
            {"company": "Microsoft", "position": "Product Manager", "status": "Interviewing", "applied_date": "2024-01-20"},
            {"company": "Apple", "position": "iOS Developer", "status": "Pending", "applied_date": "2024-01-25"},
        ],
    ),
    "european": CSVTemplate(
        id="european",
        name="European Format",
        description="Template for European job markets with day-first dates",
        source="custom",
        columns=_columns(
            ("Company", "company"),
            ("Position", "position"),
            ("Location", "location"),
            ("Salary (Annual)", "salary"),
            ("Contract Type", "type"),
            ("Application Status", "status"),
            ("Application Date", "applied_date"),
            ("Notes", "notes"),
        ),
        sample_rows=[
            {"company": "Spotify", "position": "Backend Developer", "location": "Stockholm, Sweden",
             "salary": "550,000 SEK", "type": "Permanent", "status": "Applied",
             "applied_date": "15.01.2024", "notes": "Applied via company website"},
            {"company": "SAP", "position": "Software Engineer", "location": "Berlin, Germany",
             "salary": "€75,000", "type": "Permanent", "status": "Interviewing",
             "applied_date": "20.01.2024", "notes": "Technical interview scheduled"},
            {"company": "ASML", "position": "Hardware Engineer", "location": "Eindhoven, Netherlands",
             "salary": "€68,000", "type": "Permanent", "status": "Pending",
             "applied_date": "25.01.2024", "notes": "Waiting for response"},
        ],
    ),
}


def get_template(template_id: str) -> Optional[CSVTemplate]:
    return TEMPLATES.get(template_id)


def list_templates() -> list[CSVTemplate]:
    return list(TEMPLATES.values())


def templates_by_source(source: str) -> list[CSVTemplate]:
    return [t for t in TEMPLATES.values() if t.source == source]


def _resolve(template: Union[str, CSVTemplate]) -> CSVTemplate:
    if isinstance(template, CSVTemplate):
        return template
    found = get_template(template)
    if found is None:
        raise KeyError(f"Template not found: {template}")
    return found


def _write_csv(headers: list[str], rows: list[list[str]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    writer.writerows(rows)
    return buffer.getvalue()


def generate_template_csv(template: Union[str, CSVTemplate], include_examples: bool = True) -> str:
    """Render a template as CSV text: the header row plus optional sample rows."""
    resolved = _resolve(template)
    rows = []
    if include_examples:
        rows = [
            [sample.get(c.field, "") for c in resolved.columns]
            for sample in resolved.sample_rows
        ]
    return _write_csv(resolved.headers, rows)


def detect_template(headers: list[str]) -> Optional[TemplateMatch]:
    """Find the known template whose columns best cover the given headers.

    Exact (normalised) column matches count fully, containment matches count
    PARTIAL_MATCH_WEIGHT; required columns weigh double.
    """
    normalised = [normalize_header(h) for h in headers if normalize_header(h)]
    if not normalised:
        return None

    best: Optional[TemplateMatch] = None
    for template in TEMPLATES.values():
        total_weight = matched_weight = 0.0
        matched = 0
        for column in template.columns:
            expected = normalize_header(column.column)
            weight = 2.0 if column.required else 1.0
            total_weight += weight
            if expected in normalised:
                matched += 1
                matched_weight += weight
            elif any(expected in header or header in expected for header in normalised):
                matched += 1
                matched_weight += weight * PARTIAL_MATCH_WEIGHT

        confidence = matched_weight / total_weight if total_weight else 0.0
        if best is None or confidence > best.confidence:
            best = TemplateMatch(
                template_id=template.id,
                name=template.name,
                confidence=round(confidence, 4),
                matched_fields=matched,
            )

    if best is not None and best.confidence == 0:
        return None
    return best


def mapping_from_template(template_id: str, headers: list[str]) -> tuple[FieldMapping, ConfidenceMap]:
    """Map a template's fields onto actual headers.

    Tries an exact column-name match (1.0), then containment (0.7), then the
    field's known aliases (0.5). Each header is used at most once.
    """
    template = _resolve(template_id)
    normalised = {header: normalize_header(header) for header in headers}
    mapping: FieldMapping = {}
    confidence: ConfidenceMap = {}
    used: set[str] = set()

    def find(predicate) -> Optional[str]:
        for header in headers:
            if header not in used and normalised[header] and predicate(normalised[header]):
                return header
        return None

    for column in template.columns:
        expected = normalize_header(column.column)
        header = find(lambda h: h == expected)
        score = 1.0
        if header is None:
            header = find(lambda h: expected in h or h in expected)
            score = PARTIAL_MATCH_CONFIDENCE
        if header is None:
            aliases = [normalize_header(a) for a in FIELD_SPECS[column.field].aliases]
            header = find(lambda h: h in aliases)
            score = VARIATION_MATCH_CONFIDENCE
        if header is None:
            if column.required:
                logger.debug(f"Template {template.id}: no column for required field {column.field}")
            continue
        mapping[column.field] = header
        confidence[column.field] = score
        used.add(header)

    return mapping, confidence


def render_applications_csv(applications: list[Application], template_id: Union[str, CSVTemplate] = "custom") -> str:
    """Write application records back out in a template's column layout."""
    template = _resolve(template_id)
    rows = []
    for application in applications:
        values = application.to_values()
        row = []
        for column in template.columns:
            value = values.get(column.field, "")
            if isinstance(value, list):
                value = LIST_JOINER.join(value)
            row.append(str(value))
        rows.append(row)
    return _write_csv(template.headers, rows)


def validate_template(template: CSVTemplate) -> list[str]:
    """Return the problems that make a template unusable (empty when valid)."""
    errors = []
    if not template.columns:
        errors.append("Template must have at least one column")
    fields = [c.field for c in template.columns]
    unknown = [f for f in fields if f not in CANONICAL_FIELDS]
    if unknown:
        errors.append(f"Unknown fields: {', '.join(unknown)}")
    if "company" not in fields:
        errors.append("Template must include a company column")
    duplicated = sorted({f for f in fields if fields.count(f) > 1})
    if duplicated:
        errors.append(f"Fields mapped more than once: {', '.join(duplicated)}")
    return errors


def create_custom_template(
    name: str,
    description: str,
    mapping: FieldMapping,
    sample_rows: Optional[list[dict[str, str]]] = None,
) -> CSVTemplate:
    """Build a template from a user's saved field mapping."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or "template"
    ordered = [field for field in CANONICAL_FIELDS if field in mapping]
    ordered += [field for field in mapping if field not in CANONICAL_FIELDS]
    template = CSVTemplate(
        id=f"custom-{slug}",
        name=name,
        description=description,
        source="custom",
        columns=[
            TemplateColumn(column=mapping[field], field=field, required=field == "company")
            for field in ordered
        ],
        sample_rows=sample_rows or [],
    )
    errors = validate_template(template)
    if errors:
        raise ValueError(f"Invalid template {name!r}: {'; '.join(errors)}")
    return template
