"""Tests for CSV templates."""

import csv
import io

import pytest

from jobtrail.models import CANONICAL_FIELDS
from jobtrail.pipeline import ImportPipeline
from jobtrail.templates import (
    CSVTemplate,
    TemplateColumn,
    create_custom_template,
    detect_template,
    generate_template_csv,
    get_template,
    list_templates,
    mapping_from_template,
    render_applications_csv,
    templates_by_source,
    validate_template,
)


def read_csv(text):
    return list(csv.reader(io.StringIO(text)))


class TestCatalogue:
    """Tests for the built-in template catalogue."""

    def test_list_templates(self):
        ids = [t.id for t in list_templates()]

        assert ids == ["linkedin", "indeed", "glassdoor", "custom", "minimal", "european"]

    def test_every_builtin_template_is_valid(self):
        for template in list_templates():
            assert validate_template(template) == []

    def test_custom_covers_every_field(self):
        assert set(get_template("custom").mapping) == set(CANONICAL_FIELDS)

    def test_by_source(self):
        assert [t.id for t in templates_by_source("custom")] == ["custom", "minimal", "european"]

    def test_unknown(self):
        assert get_template("monster") is None


class TestGenerateTemplateCsv:
    """Tests for generate_template_csv()."""

    def test_with_examples(self):
        rows = read_csv(generate_template_csv("linkedin"))

        assert rows[0] == ["Company", "Position", "Location", "Applied Date", "Status", "Notes"]
        assert len(rows) == 4
        assert rows[1][0] == "Google"

    def test_header_only(self):
        text = generate_template_csv("minimal", include_examples=False)

        assert text == "Company,Position,Status,Applied Date\n"

    def test_salary_with_comma_is_quoted(self):
        text = generate_template_csv("indeed")

        assert '"$120,000"' in text

    def test_unknown_template(self):
        with pytest.raises(KeyError):
            generate_template_csv("monster")


class TestDetectTemplate:
    """Tests for detect_template() and mapping_from_template()."""

    def test_detects_indeed(self):
        headers = get_template("indeed").headers

        match = detect_template(headers)

        assert match.template_id == "indeed"
        assert match.confidence == 1.0
        assert match.matched_fields == 7

    def test_tie_keeps_first_template(self):
        """Minimal's columns are a subset of LinkedIn's, so both score 1.0."""
        match = detect_template(get_template("linkedin").headers)

        assert match.template_id == "linkedin"
        assert match.confidence == 1.0

    def test_partial_headers(self):
        match = detect_template(["Employer", "Job Title", "Salary Estimate"])

        assert match.template_id == "glassdoor"
        assert 0 < match.confidence < 1

    def test_no_match(self):
        assert detect_template(["Foo", "Bar"]) is None
        assert detect_template([]) is None

    def test_mapping_from_template(self):
        headers = ["company name", "Job Title (EN)", "Submission Date", "Status"]

        mapping, confidence = mapping_from_template("indeed", headers)

        assert mapping["company"] == "company name"
        assert confidence["company"] == 1.0
        assert mapping["position"] == "Job Title (EN)"
        assert confidence["position"] == 0.7
        assert mapping["applied_date"] == "Submission Date"
        assert confidence["applied_date"] == 0.5
        assert mapping["status"] == "Status"


class TestCustomTemplates:
    """Tests for create_custom_template() and validate_template()."""

    def test_create(self):
        template = create_custom_template(
            "My Tracker",
            "Spreadsheet I keep by hand",
            {"position": "Role", "company": "Firm", "applied_date": "When"},
        )

        assert template.id == "custom-my-tracker"
        assert template.headers == ["Firm", "Role", "When"]
        assert template.columns[0].required is True

    def test_company_required(self):
        with pytest.raises(ValueError, match="company"):
            create_custom_template("No Company", "", {"position": "Role"})

    def test_unknown_field(self):
        with pytest.raises(ValueError, match="Unknown fields: salary_band"):
            create_custom_template("Odd", "", {"company": "Firm", "salary_band": "Band"})

    def test_duplicate_field(self):
        template = CSVTemplate(
            id="dup",
            name="Dup",
            description="",
            columns=[
                TemplateColumn(column="A", field="company"),
                TemplateColumn(column="B", field="company"),
            ],
        )

        assert validate_template(template) == ["Fields mapped more than once: company"]

    def test_empty_template(self):
        template = CSVTemplate(id="empty", name="Empty", description="", columns=[])

        errors = validate_template(template)

        assert "Template must have at least one column" in errors
        assert "Template must include a company column" in errors


class TestRoundTrip:
    """Templates generated here import back into the same records."""

    def test_european_sample_imports(self, config):
        data = generate_template_csv("european").encode("utf-8")

        result = ImportPipeline(config=config).run(data)

        applications = result.applications
        assert [a.company for a in applications] == ["Spotify", "SAP", "ASML"]
        assert applications[0].applied_date.isoformat() == "2024-01-15"
        assert {a.type for a in applications} == {"Full-time"}

    def test_custom_sample_round_trip(self, config):
        first = ImportPipeline(config=config).run(generate_template_csv("custom").encode("utf-8"))

        rendered = render_applications_csv(first.applications, "custom")
        second = ImportPipeline(config=config).run(rendered.encode("utf-8"))

        assert [a.to_values() for a in second.applications] == [
            a.to_values() for a in first.applications
        ]
        assert first.applications[0].requirements == ["Python", "Distributed systems"]
        assert first.applications[0].tags == ["Backend", "Music", "Sweden"]
