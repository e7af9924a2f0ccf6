from pathlib import Path

import pytest

from fhir_record_api.monitoring import get_monitor

FIXTURES = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture
def load_fixture():
    """Return a loader for files under ``tests/fixtures``."""

    def _load(name: str) -> str:
        return (FIXTURES / name).read_text(encoding="utf-8")

    return _load


@pytest.fixture
def fixture_path():
    def _path(name: str) -> Path:
        return FIXTURES / name

    return _path


@pytest.fixture(autouse=True)
def reset_monitor():
    get_monitor().reset_metrics()
    yield
