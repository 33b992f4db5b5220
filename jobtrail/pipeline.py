"""Import pipeline orchestration: file bytes in, application records out."""

import logging
import threading
import time
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from .config import Config, get_config
from .converter import build_application, convert_row
from .dedupe import apply_resolutions, detect_duplicates, summarize_duplicates
from .encoding import decode_bytes, detect_encoding, read_source
from .errors import ConversionError, CSVParseError, ImportCancelled, ImportFailedError
from .fields import detect_columns
from .models import (
    CANONICAL_FIELDS,
    Application,
    FieldMapping,
    FileAnalysis,
    ImportProgress,
    ImportResult,
    ImportSummary,
    RawRow,
    ValidationReport,
    ValidationResult,
)
from .parser import parse_csv
from .validator import AUTO_FIXED_CODES, generate_validation_summary, validate_row

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ImportProgress], Any]

TERMINAL_STAGES = ("complete", "failed")

# Progress checkpoints per stage.
UPLOAD_PROGRESS = 5.0
DECODED_PROGRESS = 10.0
PARSED_PROGRESS = 15.0
VALIDATE_START = 20.0
VALIDATE_END = 50.0
DUPLICATE_START = 55.0
DUPLICATE_END = 60.0
IMPORT_START = 61.0
IMPORT_END = 99.0


class ProgressReporter:
    """Forwards progress events, keeping them strictly increasing.

    Non-terminal events are capped at 99 and dropped when they would not
    advance the bar. At most one terminal event (complete or failed, both at
    100) is ever delivered.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self.callback = callback
        self.last_progress = -1.0
        self.stage = "uploading"
        self.finished = False

    def emit(
        self,
        stage: str,
        progress: float,
        message: str,
        current_row: Optional[int] = None,
        total_rows: Optional[int] = None,
    ) -> Optional[ImportProgress]:
        if self.finished:
            return None

        terminal = stage in TERMINAL_STAGES
        progress = 100.0 if terminal else min(round(progress, 2), IMPORT_END)
        if progress <= self.last_progress:
            logger.debug(f"Dropping non-increasing progress event {stage} {progress}")
            return None

        event = ImportProgress(
            stage=stage,
            progress=progress,
            message=message,
            current_row=current_row,
            total_rows=total_rows,
        )
        self.last_progress = progress
        self.stage = stage
        self.finished = terminal

        if self.callback is not None:
            try:
                self.callback(event)
            except Exception as e:
                logger.warning(f"Progress callback raised: {e}")
        return event


class ImportPipeline:
    """Runs one CSV import: analyze, validate, resolve duplicates, convert."""

    def __init__(
        self,
        config: Optional[Config] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.config = config or get_config()
        self.on_progress = on_progress
        self.cancel_event = cancel_event
        self.progress = ProgressReporter(on_progress)

    def _fail(self, stage: str, message: str, cause: Optional[BaseException] = None) -> None:
        cancelled = self.cancel_event is not None and self.cancel_event.is_set()
        logger.error(f"Import failed during {stage}: {message}")
        self.progress.emit("failed", 100.0, message)
        error_class = ImportCancelled if cancelled else ImportFailedError
        raise error_class(message, stage=stage) from cause

    def _between_batches(self, stage: str) -> None:
        delay = self.config.batch_delay_ms / 1000
        if self.cancel_event is not None:
            if delay:
                self.cancel_event.wait(delay)
            if self.cancel_event.is_set():
                self._fail(stage, "Import cancelled")
        elif delay:
            time.sleep(delay)

    def _batches(self, items: list, stage: str) -> Iterable[tuple[int, list]]:
        """Yield (done, batch) pairs, pausing and checking for cancellation in between."""
        size = self.config.batch_size
        for start in range(0, len(items), size):
            if start:
                self._between_batches(stage)
            batch = items[start:start + size]
            yield start + len(batch), batch

    def analyze(self, source: Any) -> FileAnalysis:
        """Read, decode and parse the file, then propose a column mapping."""
        self.progress.emit("uploading", UPLOAD_PROGRESS, "Reading file")
        try:
            data = read_source(source)
        except (OSError, TypeError) as e:
            self._fail("uploading", f"Could not read file: {e}", e)

        encoding = detect_encoding(data, self.config.encoding_sample_bytes)
        logger.info(f"Detected encoding {encoding.encoding} ({encoding.confidence:.2f})")
        self.progress.emit("parsing", DECODED_PROGRESS, f"Decoding file as {encoding.encoding}")

        try:
            text = decode_bytes(data, encoding.encoding)
            parsed = parse_csv(text)
        except (CSVParseError, UnicodeError, LookupError) as e:
            self._fail("parsing", str(e), e)

        if not parsed.rows:
            self._fail("parsing", "The file contains no data rows")

        total = len(parsed.rows)
        self.progress.emit("parsing", PARSED_PROGRESS, f"Parsed {total} rows", total, total)

        detection = detect_columns(parsed.headers, parsed.rows[: self.config.sample_size])
        return FileAnalysis(
            encoding=encoding,
            headers=parsed.headers,
            rows=parsed.rows,
            delimiter=parsed.delimiter,
            parse_warnings=parsed.warnings,
            detection=detection,
        )

    def validate(
        self,
        rows: list[RawRow],
        mapping: FieldMapping,
        existing: Optional[list[Application]] = None,
        skip_rows: Iterable[int] = (),
    ) -> ValidationResult:
        """Validate rows in batches, then group duplicates among importable rows."""
        if "company" not in mapping:
            self._fail("validating", "The company field is not mapped to any column")

        total = len(rows)
        skip = set(skip_rows)
        report = ValidationReport()
        self.progress.emit("validating", VALIDATE_START, "Validating rows", 0, total)

        for done, batch in self._batches(list(enumerate(rows)), "validating"):
            for index, row in batch:
                cleaned, errors, warnings = validate_row(index, row, mapping, self.config)
                report.cleaned_data.append(cleaned)
                report.errors.extend(errors)
                report.warnings.extend(warnings)
                if errors:
                    report.error_rows.add(index)
            share = done / total if total else 1.0
            self.progress.emit(
                "validating",
                VALIDATE_START + (VALIDATE_END - VALIDATE_START) * share,
                f"Validated {done} of {total} rows",
                done,
                total,
            )

        summary = generate_validation_summary(report.errors, report.warnings)

        self.progress.emit("validating", DUPLICATE_START, "Checking for duplicates", total, total)
        candidates = [i for i in range(total) if i not in report.error_rows and i not in skip]
        groups = detect_duplicates(
            report.cleaned_data, mapping, existing, self.config, row_indices=candidates
        )
        duplicate_summary = summarize_duplicates(groups, self.config)
        self.progress.emit(
            "validating", DUPLICATE_END, f"Found {len(groups)} duplicate groups", total, total
        )

        return ValidationResult(
            report=report,
            summary=summary,
            duplicate_groups=groups,
            duplicate_summary=duplicate_summary,
        )

    def convert(
        self,
        rows: list[RawRow],
        mapping: FieldMapping,
        indices: Optional[list[int]] = None,
        merged_rows: Optional[dict[int, dict[str, Any]]] = None,
    ) -> tuple[list[Application], int]:
        """Convert rows in batches; returns the records and the number of rows that failed."""
        indices = list(range(len(rows))) if indices is None else list(indices)
        merged_rows = merged_rows or {}
        total = len(indices)
        now = datetime.now()
        applications: list[Application] = []
        failed = 0

        self.progress.emit("importing", IMPORT_START, "Converting rows", 0, total)
        for done, batch in self._batches(indices, "importing"):
            for index in batch:
                try:
                    if index in merged_rows:
                        application = build_application(
                            merged_rows[index], index, now=now, day_first=self.config.day_first
                        )
                    else:
                        application = convert_row(
                            rows[index], mapping, index, now=now, day_first=self.config.day_first
                        )
                except ConversionError as e:
                    logger.warning(f"Skipping row {index + 1}: {e}")
                    failed += 1
                    continue
                applications.append(application)
            self.progress.emit(
                "importing",
                IMPORT_START + (IMPORT_END - IMPORT_START) * done / total,
                f"Converted {done} of {total} rows",
                done,
                total,
            )

        return applications, failed

    def run(
        self,
        source: Any,
        mapping: Optional[FieldMapping] = None,
        existing: Optional[list[Application]] = None,
        resolutions: Optional[dict[str, str]] = None,
        skip_rows: Iterable[int] = (),
    ) -> ImportResult:
        """Run a whole import.

        Raises ImportFailedError (ImportCancelled when cancelled) after emitting
        a failed progress event. Row-level problems never raise; they are
        reported in the result and the affected rows are skipped.
        """
        self.progress = ProgressReporter(self.on_progress)
        try:
            return self._run(source, mapping, existing, resolutions, set(skip_rows))
        except ImportFailedError:
            raise
        except Exception as e:
            logger.exception(f"Unexpected error during import: {e}")
            self._fail(self.progress.stage, f"Unexpected error: {e}", e)

    def _run(
        self,
        source: Any,
        mapping: Optional[FieldMapping],
        existing: Optional[list[Application]],
        resolutions: Optional[dict[str, str]],
        skip_rows: set[int],
    ) -> ImportResult:
        analysis = self.analyze(source)
        detection = analysis.detection
        for warning in analysis.parse_warnings:
            logger.warning(warning.message)

        if mapping is None:
            mapping = dict(detection.mapping)
            confidence = dict(detection.confidence)
        else:
            unknown = [field for field in mapping if field not in CANONICAL_FIELDS]
            if unknown:
                logger.warning(f"Ignoring unknown fields in mapping: {', '.join(unknown)}")
            mapping = {f: c for f, c in mapping.items() if f in CANONICAL_FIELDS}
            missing = [c for c in mapping.values() if c not in analysis.headers]
            if missing:
                logger.warning(f"Mapped columns not found in file: {', '.join(missing)}")
            confidence = {
                field: detection.confidence[field] if detection.mapping.get(field) == column else 1.0
                for field, column in mapping.items()
            }

        total = len(analysis.rows)
        validation = self.validate(analysis.rows, mapping, existing, skip_rows)
        report = validation.report

        outcome = apply_resolutions(validation.duplicate_groups, resolutions)
        blocked = report.error_rows | {i for i in skip_rows if 0 <= i < total}
        importable = [
            i for i in range(total) if i not in blocked and i not in outcome.removed_rows
        ]
        if not importable:
            self._fail("validating", "No importable rows: every row has errors or was skipped")

        applications, failed = self.convert(
            report.cleaned_data, mapping, importable, outcome.merged_rows
        )
        if not applications:
            self._fail("importing", "No rows could be converted into applications")

        removed = len(outcome.removed_rows - blocked)

        summary = ImportSummary(
            total_rows=total,
            successful_imports=len(applications),
            skipped_rows=len(blocked) + failed,
            duplicates_removed=removed,
            duplicates_found=validation.duplicate_summary.total_duplicates,
            issues_resolved=sum(1 for w in report.warnings if w.code in AUTO_FIXED_CODES),
            suggestions=_suggestions(validation, resolutions or {}, len(report.error_rows), failed),
            validation_summary=validation.summary,
            duplicate_summary=validation.duplicate_summary,
        )

        self.progress.emit(
            "complete", 100.0, f"Imported {len(applications)} applications", total, total
        )
        logger.info(
            f"Import complete: {summary.successful_imports} imported, "
            f"{summary.skipped_rows} skipped, {summary.duplicates_removed} removed as duplicates, "
            f"{summary.duplicates_found} duplicates found"
        )

        return ImportResult(
            applications=applications,
            summary=summary,
            errors=report.errors,
            warnings=report.warnings,
            parse_warnings=analysis.parse_warnings,
            duplicate_groups=validation.duplicate_groups,
            deleted_existing_ids=outcome.deleted_existing_ids,
            encoding=analysis.encoding.encoding,
            mapping=mapping,
            confidence=confidence,
        )


def _suggestions(
    validation: ValidationResult,
    resolutions: dict[str, str],
    error_rows: int,
    failed: int,
) -> list[str]:
    suggestions = []
    if error_rows:
        suggestions.append(f"{error_rows} rows with errors were skipped; fix them and import again")
    if failed:
        suggestions.append(f"{failed} rows could not be converted and were skipped")
    unresolved = [
        g for g in validation.duplicate_groups
        if g.id not in resolutions and g.recommended_action != "keep_all"
    ]
    if unresolved:
        suggestions.append(
            f"{len(unresolved)} duplicate groups were kept as-is; review them and apply the recommended action"
        )
    suggestions.extend(r for r in validation.summary.recommendations if r not in suggestions)
    return suggestions
