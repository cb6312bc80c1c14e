"""
Core library: infrastructure-agnostic building blocks.

Modules:
    errors   - Exception hierarchy and broker error classification
    logging  - Structured JSON logging with context propagation
    utils    - JSON serialization and worker id helpers
"""

from .types import ErrorCategory, ErrorClassifier

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
    "ErrorClassifier",
]
