"""Shared fixtures for the import pipeline tests."""

import csv
import io
from datetime import date, datetime

import pytest

from jobtrail import config as config_module
from jobtrail.config import Config
from jobtrail.models import Application


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Never read a developer's config/config.yaml, and reset the cached config."""
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")
    monkeypatch.setattr(config_module, "_config", None)


@pytest.fixture
def config():
    """Default configuration without the pause between batches."""
    return Config(batch_delay_ms=0)


def build_csv(headers, rows, delimiter=","):
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delimiter, lineterminator="\n")
    writer.writerow(headers)
    writer.writerows(rows)
    return buffer.getvalue()


@pytest.fixture
def make_csv():
    """Build CSV bytes from headers and row lists."""

    def _make(headers, rows, delimiter=",", encoding="utf-8"):
        return build_csv(headers, rows, delimiter).encode(encoding)

    return _make


@pytest.fixture
def make_application():
    """Factory for stored Application records."""

    def _make(**overrides):
        data = {
            "id": "app-1",
            "company": "Google",
            "position": "Software Engineer",
            "location": "Mountain View, CA",
            "status": "Applied",
            "applied_date": date(2024, 1, 15),
            "created_at": datetime(2024, 1, 15, 9, 0),
            "updated_at": datetime(2024, 1, 16, 9, 0),
        }
        data.update(overrides)
        return Application(**data)

    return _make
