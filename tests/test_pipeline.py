"""Tests for the import pipeline."""

import hashlib
import threading

import pytest

from jobtrail.config import Config
from jobtrail.errors import ImportCancelled, ImportFailedError
from jobtrail.pipeline import ImportPipeline, ProgressReporter

HEADERS = ["Company", "Position", "Status", "Applied Date"]
ROWS = [
    ["Google", "Software Engineer", "Applied", "2024-01-15"],
    ["Microsoft", "Product Manager", "Interviewing", "2024-01-20"],
    ["Apple", "iOS Developer", "Pending", "2024-01-25"],
]


class Recorder:
    """Progress callback that keeps every event."""

    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    @property
    def stages(self):
        return [event.stage for event in self.events]

    @property
    def progress(self):
        return [event.progress for event in self.events]


def assert_progress_invariants(recorder):
    progress = recorder.progress
    assert progress == sorted(progress)
    assert len(set(progress)) == len(progress)
    terminal = [e for e in recorder.events if e.stage in ("complete", "failed")]
    assert len(terminal) == 1
    assert recorder.events[-1] is terminal[0]
    assert terminal[0].progress == 100.0
    assert all(e.progress <= 99 for e in recorder.events[:-1])


class TestProgressReporter:
    """Tests for ProgressReporter."""

    def test_drops_non_increasing_events(self):
        recorder = Recorder()
        reporter = ProgressReporter(recorder)

        reporter.emit("parsing", 10, "a")
        reporter.emit("parsing", 10, "b")
        reporter.emit("parsing", 5, "c")
        reporter.emit("validating", 20, "d")

        assert [e.message for e in recorder.events] == ["a", "d"]

    def test_caps_non_terminal_progress(self):
        recorder = Recorder()
        reporter = ProgressReporter(recorder)

        reporter.emit("importing", 150, "too far")

        assert recorder.progress == [99.0]

    def test_single_terminal_event(self):
        recorder = Recorder()
        reporter = ProgressReporter(recorder)

        reporter.emit("complete", 100, "done")
        reporter.emit("failed", 100, "late failure")
        reporter.emit("importing", 99.5, "late progress")

        assert recorder.stages == ["complete"]

    def test_callback_errors_do_not_propagate(self):
        def explode(event):
            raise RuntimeError("ui went away")

        reporter = ProgressReporter(explode)

        event = reporter.emit("parsing", 10, "ok")

        assert event.progress == 10


class TestAnalyze:
    """Tests for ImportPipeline.analyze()."""

    def test_analyze_bytes(self, config, make_csv):
        analysis = ImportPipeline(config=config).analyze(make_csv(HEADERS, ROWS))

        assert analysis.encoding.encoding == "utf-8"
        assert analysis.headers == HEADERS
        assert len(analysis.rows) == 3
        assert analysis.detection.mapping["company"] == "Company"
        assert analysis.detection.mapping["applied_date"] == "Applied Date"

    def test_analyze_path(self, config, make_csv, tmp_path):
        path = tmp_path / "apps.csv"
        path.write_bytes(make_csv(HEADERS, ROWS, delimiter=";", encoding="utf-16"))

        analysis = ImportPipeline(config=config).analyze(path)

        assert analysis.encoding.encoding == "utf-16"
        assert analysis.delimiter == ";"
        assert analysis.rows[0]["Company"] == "Google"

    def test_missing_file_fails_uploading(self, config, tmp_path):
        with pytest.raises(ImportFailedError) as exc_info:
            ImportPipeline(config=config).analyze(tmp_path / "nope.csv")

        assert exc_info.value.stage == "uploading"


class TestRun:
    """Tests for ImportPipeline.run()."""

    def test_basic_import(self, config, make_csv):
        recorder = Recorder()

        result = ImportPipeline(config=config, on_progress=recorder).run(make_csv(HEADERS, ROWS))

        assert [a.company for a in result.applications] == ["Google", "Microsoft", "Apple"]
        assert result.summary.total_rows == 3
        assert result.summary.successful_imports == 3
        assert result.summary.skipped_rows == 0
        assert result.summary.duplicates_found == 0
        assert result.encoding == "utf-8"
        assert result.mapping["status"] == "Status"
        assert result.applications[1].status == "Interviewing"
        assert recorder.stages[0] == "uploading"
        assert recorder.stages[-1] == "complete"
        assert_progress_invariants(recorder)

    def test_stages_in_order(self, config, make_csv):
        recorder = Recorder()

        ImportPipeline(config=config, on_progress=recorder).run(make_csv(HEADERS, ROWS))

        order = ["uploading", "parsing", "validating", "importing", "complete"]
        stages = [stage for i, stage in enumerate(recorder.stages) if i == 0 or recorder.stages[i - 1] != stage]
        assert stages == order

    def test_large_file_in_batches(self, make_csv):
        """10,000 distinct rows import in batches of 1,000 with no false duplicates."""
        rows = [
            [hashlib.sha1(str(i).encode()).hexdigest()[:10], "Applied"]
            for i in range(10000)
        ]
        recorder = Recorder()
        config = Config(batch_size=1000, batch_delay_ms=0)

        result = ImportPipeline(config=config, on_progress=recorder).run(
            make_csv(["Company", "Status"], rows)
        )

        assert result.summary.successful_imports == 10000
        assert result.summary.duplicates_found == 0
        assert len({a.id for a in result.applications}) == 10000
        validating = [e for e in recorder.events if e.stage == "validating" and e.current_row]
        assert len(validating) >= 10
        assert_progress_invariants(recorder)

    def test_counts_auto_fixes(self, config, make_csv):
        rows = [[" Google ", "Software Engineer", "interview scheduled", "2024-01-15"]]

        result = ImportPipeline(config=config).run(make_csv(HEADERS, rows))

        assert result.applications[0].company == "Google"
        assert result.applications[0].status == "Interviewing"
        assert result.summary.issues_resolved == 2

    def test_parse_warnings_reported(self, config):
        result = ImportPipeline(config=config).run(b"Company,Position\nGoogle,SWE,extra\nMeta\n")

        assert [a.company for a in result.applications] == ["Google", "Meta"]
        assert [w.row for w in result.parse_warnings] == [0, 1]
        assert "extra values dropped" in result.parse_warnings[0].message
        assert "padded with empty values" in result.parse_warnings[1].message
        assert len(result.model_dump()["parse_warnings"]) == 2

    def test_smart_fixes_count_as_resolved(self, config, make_csv):
        headers = ["Company", "Position", "Location", "Contact Email", "Tags"]
        rows = [["Klarna", "", "stockholm, isveç", "mailto:Careers@Klarna.com", "Fintech"]]

        result = ImportPipeline(config=config).run(make_csv(headers, rows))

        application = result.applications[0]
        assert application.position == "Finance Intern"
        assert application.location == "Stockholm, Sweden"
        assert application.contact_email == "careers@klarna.com"
        assert result.summary.issues_resolved == 3

    def test_error_rows_skipped(self, config, make_csv):
        rows = ROWS + [["", "Orphan Role", "Applied", "2024-01-30"]]

        result = ImportPipeline(config=config).run(make_csv(HEADERS, rows))

        assert result.summary.successful_imports == 3
        assert result.summary.skipped_rows == 1
        assert [e.row for e in result.errors] == [3]
        assert result.summary.validation_summary.can_proceed is False

    def test_skip_rows(self, config, make_csv):
        result = ImportPipeline(config=config).run(make_csv(HEADERS, ROWS), skip_rows=[1])

        assert [a.company for a in result.applications] == ["Google", "Apple"]
        assert result.summary.skipped_rows == 1

    def test_explicit_mapping(self, config, make_csv):
        headers = ["Org", "What"]
        rows = [["Shopify", "Backend Developer"]]
        mapping = {"company": "Org", "position": "What", "salary_band": "Band"}

        result = ImportPipeline(config=config).run(make_csv(headers, rows), mapping=mapping)

        assert result.mapping == {"company": "Org", "position": "What"}
        assert result.confidence["company"] == 1.0
        assert result.applications[0].position == "Backend Developer"

    def test_duplicates_kept_by_default(self, config, make_csv):
        rows = [
            ["Google", "Software Engineer", "Applied", "2024-01-15"],
            ["Google Inc", "Software Engineer", "Applied", "2024-01-15"],
        ]

        result = ImportPipeline(config=config).run(make_csv(HEADERS, rows))

        assert len(result.applications) == 2
        assert result.summary.duplicates_found == 1
        assert result.duplicate_groups[0].recommended_action == "merge"
        assert any("duplicate groups were kept" in s for s in result.summary.suggestions)

    def test_merge_resolution(self, config, make_csv):
        rows = [
            ["Google", "Software Engineer", "Applied", "2024-01-15"],
            ["Google Inc", "Software Engineer", "Interviewing", "2024-01-20"],
        ]

        result = ImportPipeline(config=config).run(
            make_csv(HEADERS, rows), resolutions={"group-1": "merge"}
        )

        assert len(result.applications) == 1
        merged = result.applications[0]
        assert result.summary.successful_imports == 1
        assert result.summary.duplicates_removed == 1
        assert result.summary.skipped_rows == 0
        assert merged.company == "Google Inc"
        assert merged.status == "Interviewing"
        assert merged.id.endswith("-0")

    def test_merge_with_existing_record(self, config, make_csv, make_application):
        headers = ["Company", "Position", "Location", "Applied Date", "Notes"]
        rows = [["Google", "Software Engineer", "Mountain View, CA", "2024-01-15", "Onsite booked"]]
        existing = [make_application(notes="Referral")]

        result = ImportPipeline(config=config).run(
            make_csv(headers, rows), existing=existing, resolutions={"group-1": "merge"}
        )

        assert result.deleted_existing_ids == ["app-1"]
        assert len(result.applications) == 1
        assert "Referral" in result.applications[0].notes
        assert "Onsite booked" in result.applications[0].notes

    def test_callback_exception_does_not_abort(self, config, make_csv):
        def explode(event):
            raise RuntimeError("progress bar crashed")

        result = ImportPipeline(config=config, on_progress=explode).run(make_csv(HEADERS, ROWS))

        assert result.summary.successful_imports == 3


class TestRunFailures:
    """Fatal conditions end in a failed event and ImportFailedError."""

    def run_failing(self, config, data, **kwargs):
        recorder = Recorder()
        with pytest.raises(ImportFailedError) as exc_info:
            ImportPipeline(config=config, on_progress=recorder).run(data, **kwargs)
        assert recorder.stages[-1] == "failed"
        assert_progress_invariants(recorder)
        return exc_info.value

    def test_header_only(self, config, make_csv):
        error = self.run_failing(config, make_csv(HEADERS, []))

        assert error.stage == "parsing"

    def test_empty_file(self, config):
        error = self.run_failing(config, b"")

        assert error.stage == "parsing"

    def test_company_not_mapped(self, config, make_csv):
        error = self.run_failing(config, make_csv(["Position", "Location"], [["SWE", "Berlin"]]))

        assert error.stage == "validating"
        assert "company" in str(error)

    def test_every_row_has_errors(self, config, make_csv):
        rows = [["", "SWE", "Applied", "2024-01-15"], ["  ", "PM", "Applied", "2024-01-16"]]

        error = self.run_failing(config, make_csv(HEADERS, rows))

        assert error.stage == "validating"

    def test_every_row_skipped(self, config, make_csv):
        error = self.run_failing(config, make_csv(HEADERS, ROWS), skip_rows=[0, 1, 2])

        assert error.stage == "validating"

    def test_cancelled_between_batches(self, make_csv):
        cancel = threading.Event()
        recorder = Recorder()

        def cancel_after_first_batch(event):
            recorder(event)
            if event.stage == "validating" and (event.current_row or 0) >= 100:
                cancel.set()

        rows = [[f"Company {i}", "Engineer", "Applied", "2024-01-15"] for i in range(500)]
        config = Config(batch_size=100, batch_delay_ms=0)
        pipeline = ImportPipeline(config=config, on_progress=cancel_after_first_batch, cancel_event=cancel)

        with pytest.raises(ImportCancelled) as exc_info:
            pipeline.run(make_csv(HEADERS, rows))

        assert exc_info.value.stage == "validating"
        assert recorder.stages[-1] == "failed"
        assert_progress_invariants(recorder)

    def test_not_cancelled_without_event(self, make_csv):
        config = Config(batch_size=1, batch_delay_ms=0)

        result = ImportPipeline(config=config, cancel_event=threading.Event()).run(make_csv(HEADERS, ROWS))

        assert result.summary.successful_imports == 3
