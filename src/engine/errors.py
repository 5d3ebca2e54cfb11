"""
Policy engine exceptions.

Taxonomy:
- ConfigError: bad or missing policy configuration (never retried by the engine)
- NotFoundError: a referenced hypertable, index, routine or job is missing
- UnsupportedActionError: the bound routine is neither a function nor a procedure
- InvariantViolation: transaction/snapshot bookkeeping inconsistency (a bug)
"""

from typing import Optional


class PolicyError(Exception):
    """Base exception for all policy engine errors."""
    pass


class ConfigError(PolicyError):
    """
    Raised when a job configuration cannot be decoded or validated.

    Carries the same three parts a database error report does:
    a short message, an optional detail line and an optional hint.
    """

    def __init__(
        self,
        message: str,
        detail: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        self.message = message
        self.detail = detail
        self.hint = hint
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.detail:
            parts.append(f"DETAIL: {self.detail}")
        if self.hint:
            parts.append(f"HINT: {self.hint}")
        return "\n".join(parts)


class NotFoundError(ConfigError):
    """
    Raised when an object referenced by a configuration does not exist.

    A missing hypertable, index or routine is a configuration problem from
    the caller's point of view, hence the ConfigError base.
    """
    pass


class JobNotFoundError(NotFoundError):
    """Raised when a requested job does not exist."""

    def __init__(self, job_id: int):
        self.job_id = job_id
        super().__init__(f"job {job_id} not found")


class UnsupportedActionError(PolicyError):
    """Raised when a job's routine kind is neither function nor procedure."""

    def __init__(self, proc_schema: str, proc_name: str, kind: str):
        self.proc_schema = proc_schema
        self.proc_name = proc_name
        self.kind = kind
        super().__init__(
            f"unsupported function type '{kind}' for {proc_schema}.{proc_name}"
        )


class InvariantViolation(PolicyError):
    """
    Raised when transaction or snapshot bookkeeping is inconsistent.

    Examples:
    - Popping a snapshot when none is active
    - Committing when no transaction is open
    - A function (not a procedure) trying to commit
    """
    pass


class InvalidJobFieldError(PolicyError):
    """Raised when an update names a job field that cannot be altered."""

    def __init__(self, field_name: str):
        self.field_name = field_name
        super().__init__(f"job field '{field_name}' cannot be altered")
