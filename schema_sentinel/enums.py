"""
Canonical enums for Schema Sentinel.

These enums define the allowed values shared by snapshots, the inferred
model, audit issues, fix plans and the run ledger.
"""

from enum import Enum


class ConstraintType(str, Enum):
    """Constraint kinds captured from the target catalog."""

    PRIMARY_KEY = "PRIMARY KEY"
    FOREIGN_KEY = "FOREIGN KEY"
    UNIQUE = "UNIQUE"
    CHECK = "CHECK"


class IdentityKeyType(str, Enum):
    """Kinds of natural identity keys recognised by the inferrer."""

    EMAIL = "email"
    DOMAIN = "domain"
    PHONE = "phone"
    EXTERNAL_ID = "external_id"
    UUID = "uuid"
    OTHER = "other"


class RelationshipType(str, Enum):
    """Cardinality of an inferred relationship edge."""

    ONE_TO_MANY = "1:many"
    MANY_TO_MANY = "many:many"
    ONE_TO_ONE = "1:1"


class ModuleCategory(str, Enum):
    """Audit module families."""

    GENERIC = "GENERIC"
    DOMAIN_EXAMPLE = "DOMAIN_EXAMPLE"
    RULE_ENFORCER = "RULE_ENFORCER"


class IssueCategory(str, Enum):
    """What kind of integrity problem an issue describes."""

    RELATIONSHIP = "RELATIONSHIP"
    IDENTITY = "IDENTITY"
    TIME = "TIME"
    TYPE = "TYPE"
    METRIC = "METRIC"


class Severity(str, Enum):
    """Issue severity, ordered LOW < MEDIUM < HIGH < CRITICAL."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class DetectionMethod(str, Enum):
    """How an issue was detected."""

    HEURISTIC = "HEURISTIC"
    CONSTRAINT = "CONSTRAINT"
    DATA_EVIDENCE = "DATA_EVIDENCE"


class SafetyRating(str, Enum):
    """Risk classification of a proposed SQL fix."""

    SAFE = "SAFE"
    RISKY = "RISKY"
    DESTRUCTIVE = "DESTRUCTIVE"


class FixStatus(str, Enum):
    """Status of a fix on a verification run's fix plan."""

    PENDING = "PENDING"
    RESOLVED = "RESOLVED"
    NEW = "NEW"


class RunStatus(str, Enum):
    """Lifecycle of an audit run. COMPLETED and FAILED are terminal."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)
