"""
pytest configuration for queue_dump tests.

Adds src directory to Python path for imports and sets up test environment.
"""

import os
import sys
from pathlib import Path

# Set test environment variables BEFORE any imports
os.environ.setdefault("LOG_DIR", "/tmp/queue_dump_test_logs")

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))
