"""Status and vocabulary enums stored as upper-case text."""

import enum


class Source(str, enum.Enum):
    CHATGPT = "CHATGPT"
    CLAUDE = "CLAUDE"
    GROK = "GROK"
    MIXED = "MIXED"


class Role(str, enum.Enum):
    USER = "USER"
    ASSISTANT = "ASSISTANT"


class Category(str, enum.Enum):
    WORK = "WORK"
    LEARNING = "LEARNING"
    CREATIVE = "CREATIVE"
    MUNDANE = "MUNDANE"
    PERSONAL = "PERSONAL"
    OTHER = "OTHER"
    MEDICAL = "MEDICAL"
    MENTAL_HEALTH = "MENTAL_HEALTH"
    ADDICTION_RECOVERY = "ADDICTION_RECOVERY"
    INTIMACY = "INTIMACY"
    FINANCIAL = "FINANCIAL"
    LEGAL = "LEGAL"
    EMBARRASSING = "EMBARRASSING"


# Order matters: stub classification indexes into this list
CORE_CATEGORIES = [
    Category.WORK,
    Category.LEARNING,
    Category.CREATIVE,
    Category.MUNDANE,
    Category.PERSONAL,
    Category.OTHER,
]


class FilterMode(str, enum.Enum):
    INCLUDE = "INCLUDE"
    EXCLUDE = "EXCLUDE"


class Stage(str, enum.Enum):
    CLASSIFY = "CLASSIFY"
    SUMMARIZE = "SUMMARIZE"
    REDACT = "REDACT"


class RunStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class JobStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_JOB_STATUSES = (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED)


class ClassifyRunStatus(str, enum.Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
