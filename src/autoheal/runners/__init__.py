"""Action runners: the systems that execute healing actions."""

from autoheal.runners.awx import AWXRunner
from autoheal.runners.base import ActionRunner, BatchJobCreator, JobLauncher, JobStatusQuerier
from autoheal.runners.batch import BatchRunner

__all__ = [
    "AWXRunner",
    "ActionRunner",
    "BatchJobCreator",
    "BatchRunner",
    "JobLauncher",
    "JobStatusQuerier",
]
