"""
pytest configuration for pipeline tests.

Adds src directory to Python path for imports and clears per-context
logging state between tests.
"""

import sys
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Log context set by one test must not leak into the next."""
    from core.logging import clear_log_context, clear_message_context

    yield
    clear_log_context()
    clear_message_context()
