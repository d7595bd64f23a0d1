"""SQLAlchemy ORM models."""

from distill.models.batch import ImportBatch, MessageAtom, MessageLabel
from distill.models.prompt import FilterProfile, Prompt, PromptVersion
from distill.models.run import Run
from distill.models.job import Job, Output
from distill.models.classify_run import ClassifyRun

__all__ = [
    "ImportBatch",
    "MessageAtom",
    "MessageLabel",
    "Prompt",
    "PromptVersion",
    "FilterProfile",
    "Run",
    "Job",
    "Output",
    "ClassifyRun",
]
