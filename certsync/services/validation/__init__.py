from .consistency_validator import ConsistencyValidator
from .report import FindingCategory, FindingSeverity, ValidationFinding, ValidationReport

__all__ = [
    "ConsistencyValidator",
    "FindingCategory",
    "FindingSeverity",
    "ValidationFinding",
    "ValidationReport",
]
