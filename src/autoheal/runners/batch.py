"""Runner for actions that create Kubernetes batch jobs."""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING

from loguru import logger

from autoheal.errors import BatchJobError, JobAlreadyExists
from autoheal.metrics import MetricsSink, NullMetrics
from autoheal.models import Action, Alert, BatchJobAction, HealingRule

if TYPE_CHECKING:
    from autoheal.runners.base import BatchJobCreator


class BatchRunner:
    """Creates the Kubernetes jobs described by batch job actions."""

    def __init__(self, creator: "BatchJobCreator", metrics: MetricsSink | None = None):
        self._creator = creator
        self._metrics = metrics or NullMetrics()

    async def run_action(self, rule: HealingRule, action: Action, alert: Alert) -> None:
        if not isinstance(action, BatchJobAction):
            raise TypeError(f"Batch runner can't execute action of type '{type(action).__name__}'")

        name = action.name
        logger.info(f"Running batch job '{name}' to heal alert '{alert.name}'")
        if not name:
            raise BatchJobError(
                f"Can't create job for rule '{rule.name}', the name hasn't been specified"
            )

        # Jobs without namespace go to the namespace of the rule.
        namespace = action.namespace or rule.namespace

        manifest = copy.deepcopy(action.job)
        metadata = manifest.setdefault("metadata", {})
        metadata["name"] = name
        metadata["namespace"] = namespace

        try:
            await self._creator.create_job(namespace, manifest)
        except JobAlreadyExists:
            logger.warning(
                f"Batch job '{name}' already exists, will do nothing to heal alert '{alert.name}'"
            )
            return

        logger.info(f"Batch job '{name}' to heal alert '{alert.name}' has been created")
        # Jobs aren't watched after creation, so they count as completed right away.
        self._metrics.action_started("BatchJob", name, rule.name)
        self._metrics.action_completed("BatchJob", name, rule.name)
