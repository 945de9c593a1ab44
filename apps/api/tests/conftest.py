import pytest

from main import app
from services import usage_limits


@pytest.fixture(autouse=True)
def reset_local_usage_counters():
    """Keep in-memory rate-limit and free-usage state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    usage_limits.clear_window_counters()
    usage_limits.reset_daily_usage_counter()
    yield
    usage_limits.clear_window_counters()
    usage_limits.reset_daily_usage_counter()
    app.state.disable_rate_limits = previous
