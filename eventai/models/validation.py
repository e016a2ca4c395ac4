"""
Business Logic Validation

Validation helpers shared by the request models and the services.
Field-level shape checks live on the pydantic request models; this
module covers the checks that need to report every problem at once.
"""

import math
import re
from datetime import datetime, timezone
from typing import Any, List, Optional

import structlog


logger = structlog.get_logger(__name__)

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


class ValidationResult:
    """Result of validation operations"""

    def __init__(self, is_valid: bool = True, errors: Optional[List[str]] = None,
                 warnings: Optional[List[str]] = None):
        self.is_valid = is_valid
        self.errors = errors or []
        self.warnings = warnings or []

    def add_error(self, error: str):
        """Add an error to the validation result"""
        self.errors.append(error)
        self.is_valid = False

    def add_warning(self, warning: str):
        """Add a warning to the validation result"""
        self.warnings.append(warning)

    def __bool__(self):
        """Return True if validation passed"""
        return self.is_valid

    def __str__(self):
        """String representation of validation result"""
        if self.is_valid:
            warnings_str = f" ({len(self.warnings)} warnings)" if self.warnings else ""
            return f"Valid{warnings_str}"
        else:
            return f"Invalid: {'; '.join(self.errors)}"


def is_valid_email(email: Any) -> bool:
    """Simple email validation"""
    if not isinstance(email, str):
        return False
    return bool(EMAIL_PATTERN.match(email))


def is_non_negative_number(value: Any) -> bool:
    """True for finite numbers >= 0. Booleans and None are rejected."""
    if value is None or isinstance(value, bool):
        return False
    if not isinstance(value, (int, float)):
        return False
    if isinstance(value, float) and math.isnan(value):
        return False
    return math.isfinite(value) and value >= 0


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (``Z`` suffix allowed). Returns None when unparseable."""
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    except ValueError:
        return None


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
