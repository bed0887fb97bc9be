import asyncio
import inspect
import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Create temp directory for tests before any imports that might initialize runtime
_test_tmp_dir = tempfile.mkdtemp(prefix="assigna_test_")
os.environ.setdefault("SHARED_FS_ROOT", _test_tmp_dir)
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("LOG_JSON", "false")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from assigna.config import Settings  # noqa: E402
from assigna.service.runtime import reset_runtime_for_tests  # noqa: E402
from assigna.storage.memory import MemoryStore  # noqa: E402


def _wipe_memory_state() -> None:
    state_file = Path(os.environ["SHARED_FS_ROOT"]) / "state" / "memory_store.json"
    state_file.unlink(missing_ok=True)


@pytest.fixture(autouse=True)
def reset_runtime_state():
    _wipe_memory_state()
    reset_runtime_for_tests()
    yield
    _wipe_memory_state()
    reset_runtime_for_tests()


class FakeClock:
    """Settable UTC clock shared by the services under test."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


class RecordingNotifier:
    def __init__(self, result: bool = True) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.result = result

    def send(self, to: str, subject: str, body: str) -> bool:
        self.sent.append((to, subject, body))
        return self.result


@pytest.fixture
def settings():
    return Settings(
        jwt_secret="Test-Secret-Key_for-Automation-Only-987654321!",
        session_ttl_minutes=30,
        refresh_ttl_days=30,
        reset_ttl_hours=24,
        password_reset_url="https://app.example.com/reset-password?token",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store(tmp_path):
    return MemoryStore(fs_root=str(tmp_path))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def failing_notifier():
    return RecordingNotifier(result=False)


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
