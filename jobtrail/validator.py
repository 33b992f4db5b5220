"""Row validation and auto-correction of mapped CSV data."""

import logging
from collections import Counter
from typing import Optional

from .config import Config, get_config
from .fields import FIELD_SPECS
from .models import (
    FieldMapping,
    RawRow,
    RowError,
    RowWarning,
    ValidationReport,
    ValidationSummary,
)
from .normalize import (
    clean_email,
    is_valid_email,
    is_valid_url,
    normalize_enum,
    parse_date,
    position_from_sector,
    repair_url,
    standardize_location,
)

logger = logging.getLogger(__name__)

# Ranked advice for the most frequent issue codes.
RECOMMENDATIONS = {
    "required_field_missing": "Fill in the missing company names or skip those rows",
    "invalid_date": "Use YYYY-MM-DD dates to avoid ambiguous day/month parsing",
    "invalid_enum": "Check status, type and priority values; unknown values were reset to defaults",
    "enum_normalized": "Status, type and priority values were normalised to standard names",
    "invalid_email": "Review contact emails that do not look like addresses",
    "email_lowercased": "Contact emails were converted to lower case",
    "email_cleaned": "Contact emails were cleaned of mailto: prefixes and stray spaces",
    "invalid_url": "Review links that are not valid web addresses",
    "url_repaired": "Links without http:// or https:// were completed",
    "whitespace_trimmed": "Leading and trailing spaces were removed from cells",
    "position_generated": "Empty positions were filled in from the sector; review the generated titles",
    "location_standardized": "Locations were standardised to English country names",
    "response_before_applied": "Check response dates that fall before the applied date",
}

# Warning codes whose suggested fix was written into cleaned_data.
AUTO_FIXED_CODES = {
    "whitespace_trimmed",
    "invalid_date",
    "invalid_enum",
    "enum_normalized",
    "email_lowercased",
    "email_cleaned",
    "url_repaired",
    "position_generated",
    "location_standardized",
}


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def validate_row(
    index: int,
    row: RawRow,
    mapping: FieldMapping,
    config: Config,
) -> tuple[RawRow, list[RowError], list[RowWarning]]:
    """Validate one row; returns the cleaned copy plus its errors and warnings."""
    cleaned = dict(row)
    errors: list[RowError] = []
    warnings: list[RowWarning] = []
    trimmed: set[str] = set()
    parsed_dates = {}

    for field in config.required_fields:
        if field not in mapping:
            errors.append(
                RowError(
                    row=index,
                    column=field,
                    message=f"Required field '{field}' is not mapped to any column",
                    code="required_field_missing",
                )
            )

    for field, column in mapping.items():
        spec = FIELD_SPECS.get(field)
        if spec is None:
            continue
        raw = row.get(column)
        raw = "" if raw is None else str(raw)
        value = raw.strip()

        if value != raw and column not in trimmed:
            trimmed.add(column)
            cleaned[column] = value
            warnings.append(
                RowWarning(
                    row=index,
                    column=column,
                    message="Removed leading/trailing whitespace",
                    code="whitespace_trimmed",
                    suggested_fix=value,
                )
            )

        if field == "position" and not value:
            tags_column = mapping.get("tags")
            sector = str(row.get(tags_column) or "").strip() if tags_column else ""
            if sector:
                value = position_from_sector(sector)
                cleaned[column] = value
                warnings.append(
                    RowWarning(
                        row=index,
                        column=column,
                        message=f"Generated position '{value}' from sector '{sector}'",
                        code="position_generated",
                        suggested_fix=value,
                    )
                )

        required = field in config.required_fields
        if not value:
            if required:
                errors.append(
                    RowError(
                        row=index,
                        column=column,
                        message=f"Required field '{field}' is empty",
                        code="required_field_missing",
                    )
                )
            continue

        if field == "location":
            standardized = standardize_location(value)
            if standardized and standardized != value:
                cleaned[column] = standardized
                warnings.append(
                    RowWarning(
                        row=index,
                        column=column,
                        message=f"Standardised location '{value}' to '{standardized}'",
                        code="location_standardized",
                        suggested_fix=standardized,
                    )
                )

        elif spec.kind == "date":
            parsed = parse_date(value, day_first=config.day_first)
            if parsed is not None:
                parsed_dates[field] = parsed
            elif required:
                errors.append(
                    RowError(
                        row=index,
                        column=column,
                        message=f"Could not parse date '{value}'",
                        code="invalid_date",
                    )
                )
            else:
                cleaned[column] = ""
                warnings.append(
                    RowWarning(
                        row=index,
                        column=column,
                        message=f"Could not parse date '{value}'; value cleared",
                        code="invalid_date",
                        suggested_fix=None,
                    )
                )

        elif spec.kind == "enum":
            canonical, matched = normalize_enum(field, value)
            if not matched:
                cleaned[column] = canonical
                warnings.append(
                    RowWarning(
                        row=index,
                        column=column,
                        message=f"Unknown {field} '{value}'; using default '{canonical}'",
                        code="invalid_enum",
                        suggested_fix=canonical,
                    )
                )
            elif canonical != value:
                cleaned[column] = canonical
                warnings.append(
                    RowWarning(
                        row=index,
                        column=column,
                        message=f"Normalised {field} '{value}' to '{canonical}'",
                        code="enum_normalized",
                        suggested_fix=canonical,
                    )
                )

        elif spec.kind == "email":
            if not is_valid_email(value):
                fixed = clean_email(value)
                if fixed:
                    cleaned[column] = fixed
                    warnings.append(
                        RowWarning(
                            row=index,
                            column=column,
                            message=f"Cleaned email address '{value}'",
                            code="email_cleaned",
                            suggested_fix=fixed,
                        )
                    )
                else:
                    warnings.append(
                        RowWarning(
                            row=index,
                            column=column,
                            message=f"'{value}' does not look like an email address",
                            code="invalid_email",
                        )
                    )
            elif value.lower() != value:
                cleaned[column] = value.lower()
                warnings.append(
                    RowWarning(
                        row=index,
                        column=column,
                        message="Converted email to lower case",
                        code="email_lowercased",
                        suggested_fix=value.lower(),
                    )
                )

        elif spec.kind == "url":
            if not is_valid_url(value):
                repaired = repair_url(value)
                if repaired:
                    cleaned[column] = repaired
                    warnings.append(
                        RowWarning(
                            row=index,
                            column=column,
                            message=f"Added https:// to '{value}'",
                            code="url_repaired",
                            suggested_fix=repaired,
                        )
                    )
                else:
                    warnings.append(
                        RowWarning(
                            row=index,
                            column=column,
                            message=f"'{value}' is not a valid URL",
                            code="invalid_url",
                        )
                    )

    applied, response = parsed_dates.get("applied_date"), parsed_dates.get("response_date")
    if applied and response and response < applied:
        warnings.append(
            RowWarning(
                row=index,
                column=mapping["response_date"],
                message=f"Response date {response.isoformat()} is before applied date {applied.isoformat()}",
                code="response_before_applied",
            )
        )

    return cleaned, errors, warnings


def validate_dataset(
    rows: list[RawRow],
    mapping: FieldMapping,
    config: Optional[Config] = None,
) -> ValidationReport:
    """Validate every row against the mapping.

    cleaned_data always has one entry per input row; rows with errors stay in
    it and are listed in error_rows.
    """
    config = config or get_config()
    report = ValidationReport()

    for index, row in enumerate(rows):
        cleaned, errors, warnings = validate_row(index, row, mapping, config)
        report.cleaned_data.append(cleaned)
        report.errors.extend(errors)
        report.warnings.extend(warnings)
        if errors:
            report.error_rows.add(index)

    logger.debug(
        f"Validated {len(rows)} rows: {len(report.errors)} errors, "
        f"{len(report.warnings)} warnings"
    )
    return report


def generate_validation_summary(
    errors: list[RowError],
    warnings: list[RowWarning],
) -> ValidationSummary:
    """Summarise validation issues and rank recommendations by how often each code occurs."""
    critical = len(errors)
    warning_count = len(warnings)
    recommendations = []

    if not errors and not warnings:
        summary = "Data validation completed successfully. All records are ready for import."
        recommendations.append("Proceed with import")
    elif errors:
        summary = (
            f"Found {_plural(critical, 'critical error')} and {_plural(warning_count, 'warning')}. "
            "Rows with errors will be skipped unless fixed."
        )
        recommendations.append("Fix critical errors before importing")
    else:
        summary = (
            f"Found {_plural(warning_count, 'warning')} that have been auto-corrected. "
            "Data is ready for import."
        )
        recommendations.append("Review auto-corrections and proceed with import")

    codes = Counter(issue.code for issue in errors)
    codes.update(issue.code for issue in warnings)
    for code, _ in sorted(codes.items(), key=lambda item: (-item[1], item[0])):
        advice = RECOMMENDATIONS.get(code)
        if advice and advice not in recommendations:
            recommendations.append(advice)

    return ValidationSummary(
        can_proceed=not errors,
        total_issues=critical + warning_count,
        critical_errors=critical,
        warnings=warning_count,
        summary=summary,
        recommendations=recommendations,
    )
