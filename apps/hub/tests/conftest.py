import asyncio
import os
import sys
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict

ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

# Keep the module-level store out of the working tree.
os.environ.setdefault("WIND_STORE_DB", str(Path(tempfile.mkdtemp(prefix="windhub-tests-")) / "wind_store.sqlite"))

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from config import settings  # noqa: E402
from main import create_app  # noqa: E402
from services.wind_store import WindStore, wind_store  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_wind_store() -> None:
    asyncio.run(wind_store.clear())
    yield
    asyncio.run(wind_store.clear())


@pytest.fixture
def settings_override() -> Callable[..., None]:
    original: Dict[str, Any] = {}

    def _apply(**overrides: Any) -> None:
        for key, value in overrides.items():
            if key not in original:
                original[key] = getattr(settings, key)
            setattr(settings, key, value)

    yield _apply

    for key, value in original.items():
        setattr(settings, key, value)


@pytest.fixture
def disable_background(settings_override: Callable[..., None]) -> None:
    settings_override(wind_stream_relay_enabled=False, refresh_enabled=False)
    yield


@pytest.fixture
def store(tmp_path: Path) -> WindStore:
    return WindStore(db_path=tmp_path / "wind_store.sqlite")


@pytest.fixture
def client(disable_background: None) -> TestClient:
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def no_sleep() -> Callable[[float], Any]:
    """Backoff sleep stand-in that records the requested delays."""

    delays: list[float] = []

    async def _sleep(delay: float) -> None:
        delays.append(delay)
        await asyncio.sleep(0)

    _sleep.delays = delays  # type: ignore[attr-defined]
    return _sleep
