"""Security module for shellguard."""

from shellguard.security.policy import (
    CONFIRMATION_PATTERNS,
    DANGEROUS_PATTERNS,
    SecurityPolicy,
    SecurityViolation,
)
from shellguard.security.violations import ViolationLog

__all__ = [
    "CONFIRMATION_PATTERNS",
    "DANGEROUS_PATTERNS",
    "SecurityPolicy",
    "SecurityViolation",
    "ViolationLog",
]
