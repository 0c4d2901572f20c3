"""
Pytest configuration and fixtures
"""
import sys
from pathlib import Path
import logging
import pytest

# Register pytest-asyncio plugin explicitly
pytest_plugins = ["pytest_asyncio"]

# Add project root to Python path
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))


@pytest.fixture(autouse=True)
def restore_root_handlers():
    """Undo handlers installed on the root logger by configure_logging"""
    root = logging.getLogger()
    original_handlers = list(root.handlers)
    original_level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in original_handlers:
            root.removeHandler(handler)
    root.setLevel(original_level)
