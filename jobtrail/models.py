"""Data models for CSV import of job applications."""

from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

JobType = Literal["Full-time", "Part-time", "Internship", "Contract", "Freelance"]
Status = Literal[
    "Pending", "Applied", "Interviewing", "Offered", "Rejected", "Accepted", "Withdrawn"
]
Priority = Literal["Low", "Medium", "High"]
Stage = Literal["uploading", "parsing", "validating", "importing", "complete", "failed"]
ResolutionAction = Literal[
    "merge", "keep_newest", "keep_oldest", "delete_duplicates", "keep_all"
]

JOB_TYPES: tuple[str, ...] = ("Full-time", "Part-time", "Internship", "Contract", "Freelance")
STATUSES: tuple[str, ...] = (
    "Pending", "Applied", "Interviewing", "Offered", "Rejected", "Accepted", "Withdrawn"
)
PRIORITIES: tuple[str, ...] = ("Low", "Medium", "High")

# Closed set of fields a CSV column can be mapped onto, in tie-break order.
CANONICAL_FIELDS: tuple[str, ...] = (
    "company",
    "position",
    "location",
    "type",
    "salary",
    "status",
    "applied_date",
    "response_date",
    "interview_date",
    "notes",
    "contact_person",
    "contact_email",
    "contact_phone",
    "website",
    "tags",
    "priority",
    "job_url",
    "job_description",
    "company_website",
    "requirements",
    "follow_up_date",
    "offer_date",
    "rejection_date",
)

RawRow = dict[str, str]
FieldMapping = dict[str, str]
ConfidenceMap = dict[str, float]


class Application(BaseModel):
    """A job application record as stored by the tracker."""

    id: str
    company: str = Field(min_length=1)
    position: str = ""
    location: str = ""
    type: JobType = "Full-time"
    salary: str = ""
    status: Status = "Pending"
    priority: Priority = "Medium"
    applied_date: date
    response_date: Optional[date] = None
    interview_date: Optional[date] = None
    follow_up_date: Optional[date] = None
    offer_date: Optional[date] = None
    rejection_date: Optional[date] = None
    notes: str = ""
    contact_person: str = ""
    contact_email: str = ""
    contact_phone: str = ""
    website: str = ""
    job_url: str = ""
    job_description: str = ""
    company_website: str = ""
    tags: list[str] = Field(default_factory=list)
    requirements: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    def to_values(self) -> dict[str, Any]:
        """Canonical field values: dates as ISO strings, lists as lists."""
        values: dict[str, Any] = {}
        for field in CANONICAL_FIELDS:
            value = getattr(self, field)
            if isinstance(value, date):
                value = value.isoformat()
            elif value is None:
                value = ""
            elif isinstance(value, list):
                value = list(value)
            values[field] = value
        return values


class RowIssue(BaseModel):
    """A problem found in one cell of one data row (row is a 0-based index)."""

    row: int
    column: str
    message: str
    code: str
    suggested_fix: Optional[str] = None


class RowError(RowIssue):
    """Blocks the row from being imported until fixed or skipped."""


class RowWarning(RowIssue):
    """Auto-corrected or informational; never blocks the row."""


class EncodingDetectionResult(BaseModel):
    """Detected encoding, how sure the detector is, and a decoded preview."""

    encoding: str
    confidence: float = Field(ge=0.0, le=1.0)
    sample: str = ""


class ParseWarning(BaseModel):
    """A non-fatal structural problem in one data row (row is a 0-based index)."""

    row: int
    message: str


class ParseResult(BaseModel):
    """Cleaned headers and rows of a parsed CSV file."""

    headers: list[str]
    rows: list[RawRow]
    warnings: list[ParseWarning] = Field(default_factory=list)
    delimiter: str = ","


class ColumnDetectionResult(BaseModel):
    """Proposed field-to-column mapping with a confidence per field."""

    mapping: FieldMapping
    confidence: ConfidenceMap
    suggestions: list[str] = Field(default_factory=list)


class ValidationSummary(BaseModel):
    """Counts and advice for the validation step."""

    can_proceed: bool
    total_issues: int
    critical_errors: int
    warnings: int
    summary: str
    recommendations: list[str] = Field(default_factory=list)


class ValidationReport(BaseModel):
    """Row issues plus a cleaned copy of every input row."""

    errors: list[RowError] = Field(default_factory=list)
    warnings: list[RowWarning] = Field(default_factory=list)
    cleaned_data: list[RawRow] = Field(default_factory=list)
    error_rows: set[int] = Field(default_factory=set)


class DuplicateMember(BaseModel):
    """One member of a duplicate group: an incoming row or a stored record."""

    index: Optional[int] = None
    application_id: Optional[str] = None
    is_existing: bool = False
    values: dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[datetime] = None


class DuplicateGroup(BaseModel):
    """Records that look like the same application."""

    id: str
    members: list[DuplicateMember]
    confidence: float = Field(ge=0.0, le=1.0)
    match_reasons: list[str] = Field(default_factory=list)
    recommended_action: ResolutionAction = "keep_all"
    merge_preview: Optional[dict[str, Any]] = None

    @property
    def row_indices(self) -> list[int]:
        return [m.index for m in self.members if not m.is_existing and m.index is not None]

    @property
    def existing_ids(self) -> list[str]:
        return [m.application_id for m in self.members if m.is_existing and m.application_id]


class DuplicateMatch(BaseModel):
    """A stored application that resembles a checked record."""

    application: Application
    similarity: float
    reasons: list[str] = Field(default_factory=list)


class DuplicateCheckResult(BaseModel):
    """Outcome of checking one record against stored applications."""

    is_duplicate: bool
    matches: list[DuplicateMatch] = Field(default_factory=list)
    confidence: Literal["high", "medium", "low"] = "low"


class DuplicateSummary(BaseModel):
    """Duplicate groups counted per confidence band."""

    total_duplicates: int = 0
    high_confidence_groups: int = 0
    medium_confidence_groups: int = 0
    low_confidence_groups: int = 0
    recommended_actions: list[str] = Field(default_factory=list)


class ImportProgress(BaseModel):
    """One progress event reported while an import runs."""

    stage: Stage
    progress: float = Field(ge=0.0, le=100.0)
    message: str
    current_row: Optional[int] = None
    total_rows: Optional[int] = None


class ImportSummary(BaseModel):
    """Row counts and advice for a finished import."""

    total_rows: int = 0
    successful_imports: int = 0
    skipped_rows: int = 0
    # Rows dropped by a duplicate resolution; total_rows is the sum of the three counts.
    duplicates_removed: int = 0
    duplicates_found: int = 0
    issues_resolved: int = 0
    suggestions: list[str] = Field(default_factory=list)
    validation_summary: Optional[ValidationSummary] = None
    duplicate_summary: Optional[DuplicateSummary] = None


class FileAnalysis(BaseModel):
    """Everything learned about an uploaded file before the user commits a mapping."""

    encoding: EncodingDetectionResult
    headers: list[str]
    rows: list[RawRow]
    delimiter: str = ","
    parse_warnings: list[ParseWarning] = Field(default_factory=list)
    detection: ColumnDetectionResult


class ImportResult(BaseModel):
    """Everything a finished import hands back to the caller."""

    applications: list[Application] = Field(default_factory=list)
    summary: ImportSummary
    errors: list[RowError] = Field(default_factory=list)
    warnings: list[RowWarning] = Field(default_factory=list)
    parse_warnings: list[ParseWarning] = Field(default_factory=list)
    duplicate_groups: list[DuplicateGroup] = Field(default_factory=list)
    deleted_existing_ids: list[str] = Field(default_factory=list)
    encoding: Optional[str] = None
    mapping: FieldMapping = Field(default_factory=dict)
    confidence: ConfidenceMap = Field(default_factory=dict)


class PairScore(BaseModel):
    """Weighted similarity of two records and the reasons behind it."""

    score: float = Field(ge=0.0, le=1.0)
    reasons: list[str] = Field(default_factory=list)


class ResolutionOutcome(BaseModel):
    """What applying duplicate resolutions does to an import batch."""

    removed_rows: set[int] = Field(default_factory=set)
    # Row index -> merged canonical values that replace that row.
    merged_rows: dict[int, dict[str, Any]] = Field(default_factory=dict)
    deleted_existing_ids: list[str] = Field(default_factory=list)

    def surviving_rows(self, indices: list[int]) -> list[int]:
        return [i for i in indices if i not in self.removed_rows]


class ValidationResult(BaseModel):
    """Outcome of the validating stage: row checks plus duplicate grouping."""

    report: ValidationReport
    summary: ValidationSummary
    duplicate_groups: list[DuplicateGroup] = Field(default_factory=list)
    duplicate_summary: DuplicateSummary = Field(default_factory=DuplicateSummary)
