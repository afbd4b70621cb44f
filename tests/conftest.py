import os
import sys
import tempfile

# Settings are read at import time: point the event log at a scratch DB and
# keep the API from starting background workers before appop is imported.
os.environ.setdefault("APPOP_DB_PATH", os.path.join(tempfile.mkdtemp(prefix="appop-tests-"), "events.db"))
os.environ.setdefault("APPOP_START_CONTROLLER", "false")

# Ensure project root is importable (so `import appop` works without installing)
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

import pytest

from appop.models import Application
from appop.store import MemoryStore, SqliteStore


def make_application(**overrides) -> Application:
    fields = dict(
        namespace="default",
        name="test-app",
        replica_count=2,
        memory_limit="500M",
        cpu_request="250M",
        image_repository="repo",
        image_tag="tag",
        ui_color="#321903",
        ui_message="hello world",
        redis_enabled=False,
    )
    fields.update(overrides)
    return Application(**fields)


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemoryStore()
    return SqliteStore(str(tmp_path / "store.db"))


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def application():
    return make_application()


@pytest.fixture
def make_app():
    return make_application
