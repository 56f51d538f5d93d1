import asyncio

import pytest

from ghbridge.core.db import QueueStore


@pytest.fixture(scope="session")
def event_loop():
    """Event loop compartido para tests async sin pytest-asyncio."""
    loop = asyncio.new_event_loop()
    try:
        yield loop
    finally:
        loop.run_until_complete(asyncio.sleep(0))
        loop.close()


@pytest.fixture
def temp_db_path(tmp_path):
    return tmp_path / "data" / "queue.db"


@pytest.fixture
def store(event_loop, temp_db_path):
    s = QueueStore(temp_db_path)
    event_loop.run_until_complete(s.open())
    yield s
    event_loop.run_until_complete(s.close())


@pytest.fixture(autouse=True)
def _reset_sse_app_status():
    # sse-starlette guarda un Event global ligado al primer loop que lo usa
    import sse_starlette.sse as sse

    status = getattr(sse, "AppStatus", None)
    if status is not None and hasattr(status, "should_exit_event"):
        status.should_exit_event = None
    yield
