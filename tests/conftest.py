import pytest
from sse_starlette import sse


@pytest.fixture(autouse=True)
def fresh_sse_exit_event():
    """sse-starlette may cache its shutdown event on a class attribute tied to the first test's event loop."""
    status = getattr(sse, "AppStatus", None)
    if status is not None and hasattr(status, "should_exit_event"):
        status.should_exit_event = None
    yield
