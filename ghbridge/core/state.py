from enum import Enum


class JobStatus(str, Enum):
    QUEUED    = "queued"
    RUNNING   = "running"
    COMPLETED = "completed"
    FAILED    = "failed"


TERMINAL = frozenset({JobStatus.COMPLETED.value, JobStatus.FAILED.value})


class ClaimOutcome(str, Enum):
    JOB       = "job"
    EMPTY     = "empty"
    CONTENDED = "contended"  # error/lock dentro de la transacción -> reintentar luego


class MarkOutcome(str, Enum):
    UPDATED          = "updated"
    NOT_FOUND        = "not_found"
    ALREADY_TERMINAL = "already_terminal"
