"""Autoheal core components."""

from autoheal.core.dispatcher import Dispatcher, RuleOutcome
from autoheal.core.healer import Healer
from autoheal.core.memory import ShortTermMemory
from autoheal.core.poller import ActiveJobPoller, ActiveJobs
from autoheal.core.rules import RuleStore
from autoheal.core.templates import ObjectTemplate
from autoheal.core.workqueue import WorkQueue

__all__ = [
    "ActiveJobPoller",
    "ActiveJobs",
    "Dispatcher",
    "Healer",
    "ObjectTemplate",
    "RuleOutcome",
    "RuleStore",
    "ShortTermMemory",
    "WorkQueue",
]
