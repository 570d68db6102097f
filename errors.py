import re

from sqlalchemy.exc import IntegrityError

UNIQUE = "unique"
FOREIGN_KEY = "foreign_key"
NOT_NULL = "not_null"
CHECK = "check"
UNKNOWN = "integrity"

# PostgreSQL SQLSTATE codes for integrity constraint violations
_PG_CODES = {
    "23505": UNIQUE,
    "23503": FOREIGN_KEY,
    "23001": FOREIGN_KEY,
    "23502": NOT_NULL,
    "23514": CHECK,
}

# SQLite only exposes the violation through the message text
_MESSAGE_PATTERNS = [
    (re.compile(r"UNIQUE constraint failed", re.IGNORECASE), UNIQUE),
    (re.compile(r"FOREIGN KEY constraint failed", re.IGNORECASE), FOREIGN_KEY),
    (re.compile(r"NOT NULL constraint failed", re.IGNORECASE), NOT_NULL),
    (re.compile(r"CHECK constraint failed", re.IGNORECASE), CHECK),
]


class FastFoodError(Exception):
    """Base class for errors raised by the ordering operations."""

    status_code = 400
    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"ok": False, "error": self.kind, "message": self.message}


class NotFound(FastFoodError):
    status_code = 404
    kind = "not_found"


class ValidationError(FastFoodError):
    status_code = 400
    kind = "validation"


class InvalidTransition(FastFoodError):
    status_code = 409
    kind = "invalid_transition"

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(f"{entity} cannot move from {current} to {target}")
        self.entity = entity
        self.current = current
        self.target = target


class ConstraintViolation(FastFoodError):
    """A write rejected by the database: unique, foreign_key, not_null or check."""

    def __init__(self, kind: str, detail: str):
        super().__init__(f"{kind} constraint violated: {detail}")
        self.kind = kind
        self.detail = detail
        # duplicates and dangling references conflict with existing state
        self.status_code = 409 if kind in (UNIQUE, FOREIGN_KEY) else 400


def violation_kind(exc: IntegrityError) -> str:
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in _PG_CODES:
        return _PG_CODES[code]

    message = str(orig)
    for pattern, kind in _MESSAGE_PATTERNS:
        if pattern.search(message):
            return kind
    return UNKNOWN


def classify_integrity_error(exc: IntegrityError) -> ConstraintViolation:
    detail = str(exc.orig).strip().splitlines()[0] if exc.orig is not None else str(exc)
    return ConstraintViolation(violation_kind(exc), detail)
