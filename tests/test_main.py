"""Tests for the command-line entry point."""

import json
import logging

import pytest
from filelock import Timeout

from jobtrail import main as main_module
from jobtrail.main import EXIT_FAILED, EXIT_OK, EXIT_USAGE, build_parser, main

HEADERS = ["Company", "Position", "Status", "Applied Date"]


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    """Keep the lock and log files inside tmp_path."""
    monkeypatch.setattr(main_module, "LOCK_FILE", tmp_path / "import.lock")
    monkeypatch.setattr(main_module, "LOG_DIR", tmp_path / "logs")
    # basicConfig is a no-op once the root logger has handlers
    root = logging.getLogger()
    monkeypatch.setattr(root, "handlers", [])
    return tmp_path


class TestBuildParser:
    def test_import_arguments(self):
        args = build_parser().parse_args(
            ["import", "apps.csv", "--skip-row", "2", "--skip-row", "5", "--resolve", "recommended"]
        )

        assert args.command == "import"
        assert args.skip_rows == [2, 5]
        assert args.resolve == "recommended"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestTemplateCommand:
    def test_prints_template(self, capsys):
        assert main(["template", "minimal", "--no-examples"]) == EXIT_OK

        assert capsys.readouterr().out == "Company,Position,Status,Applied Date\n"

    def test_unknown_template(self, capsys):
        assert main(["template", "monster"]) == EXIT_USAGE

        assert "Unknown template: monster" in capsys.readouterr().err


class TestImportCommand:
    def test_writes_result(self, cli_env, make_csv):
        source = cli_env / "apps.csv"
        source.write_bytes(make_csv(HEADERS, [["Google", "SWE", "Applied", "2024-01-15"]]))
        output = cli_env / "result.json"

        code = main(["import", str(source), "--output", str(output)])

        assert code == EXIT_OK
        result = json.loads(output.read_text())
        assert result["summary"]["successful_imports"] == 1
        assert result["applications"][0]["company"] == "Google"
        assert (cli_env / "logs" / "import.log").exists()

    def test_existing_and_recommended_resolution(self, cli_env, make_csv, make_application):
        source = cli_env / "apps.csv"
        source.write_bytes(
            make_csv(
                ["Company", "Position", "Location", "Applied Date"],
                [["Google", "Software Engineer", "Mountain View, CA", "2024-01-15"]],
            )
        )
        existing = cli_env / "existing.json"
        existing.write_text(json.dumps([make_application().model_dump(mode="json")]))
        output = cli_env / "result.json"

        code = main([
            "import", str(source), "--existing", str(existing),
            "--resolve", "recommended", "--output", str(output),
        ])

        assert code == EXIT_OK
        result = json.loads(output.read_text())
        assert result["deleted_existing_ids"] == ["app-1"]
        assert len(result["applications"]) == 1

    def test_mapping_file(self, cli_env, make_csv):
        source = cli_env / "apps.csv"
        source.write_bytes(make_csv(["Org", "What"], [["Shopify", "Backend Developer"]]))
        mapping = cli_env / "mapping.json"
        mapping.write_text(json.dumps({"company": "Org", "position": "What"}))
        output = cli_env / "result.json"

        code = main(["import", str(source), "--mapping", str(mapping), "--output", str(output)])

        assert code == EXIT_OK
        assert json.loads(output.read_text())["applications"][0]["company"] == "Shopify"

    def test_failed_import(self, cli_env, make_csv):
        source = cli_env / "apps.csv"
        source.write_bytes(make_csv(HEADERS, []))

        assert main(["import", str(source)]) == EXIT_FAILED

    def test_bad_mapping_file(self, cli_env, make_csv):
        source = cli_env / "apps.csv"
        source.write_bytes(make_csv(HEADERS, [["Google", "SWE", "Applied", "2024-01-15"]]))
        mapping = cli_env / "mapping.json"
        mapping.write_text("[1, 2]")

        assert main(["import", str(source), "--mapping", str(mapping)]) == EXIT_USAGE

    def test_missing_config(self, cli_env):
        code = main(["import", "apps.csv", "--config", str(cli_env / "nope.yaml")])

        assert code == EXIT_FAILED

    def test_lock_held(self, cli_env, monkeypatch):
        class BusyLock:
            def __init__(self, *args, **kwargs):
                pass

            def __enter__(self):
                raise Timeout(str(cli_env / "import.lock"))

            def __exit__(self, *exc):
                return False

        monkeypatch.setattr(main_module, "FileLock", BusyLock)

        assert main(["import", "apps.csv"]) == EXIT_OK
