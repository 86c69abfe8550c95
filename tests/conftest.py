from pathlib import Path

import pytest

from streamtest.config import load_settings, settings_path
from streamtest.execution.local import MiniCluster
from streamtest.observability.log import configure_logging

LOGGING_CONFIG = Path(__file__).resolve().parent.parent / "config" / "logging.yaml"


@pytest.fixture(autouse=True)
def _logging():
    configure_logging(LOGGING_CONFIG)


@pytest.fixture
def cluster():
    with MiniCluster.from_settings(load_settings(settings_path()).cluster) as mini_cluster:
        yield mini_cluster
