"""Runner for actions that launch AWX jobs."""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from autoheal.errors import TemplateNotFoundError
from autoheal.metrics import MetricsSink, NullMetrics
from autoheal.models import Action, Alert, HealingRule, JobAction

if TYPE_CHECKING:
    from autoheal.awx import JobTemplate
    from autoheal.core.poller import ActiveJobs
    from autoheal.runners.base import JobLauncher


class AWXRunner:
    """Launches the job templates referenced by AWX job actions."""

    def __init__(
        self,
        launcher: "JobLauncher",
        project: str,
        active_jobs: "ActiveJobs",
        metrics: MetricsSink | None = None,
    ):
        """Initialize the runner.

        Args:
            launcher: AWX client used to find and launch templates.
            project: AWX project that contains the templates.
            active_jobs: Registry where launched jobs are tracked until they finish.
            metrics: Metrics sink.
        """
        self._launcher = launcher
        self._project = project
        self._active_jobs = active_jobs
        self._metrics = metrics or NullMetrics()

    async def run_action(self, rule: HealingRule, action: Action, alert: Alert) -> None:
        if not isinstance(action, JobAction):
            raise TypeError(f"AWX runner can't execute action of type '{type(action).__name__}'")

        templates = await self._launcher.find_templates(self._project, action.template)
        if not templates:
            raise TemplateNotFoundError(
                f"Template '{action.template}' not found in project '{self._project}'"
            )

        logger.info(
            f"Running AWX job from project '{self._project}' and template "
            f"'{action.template}' to heal alert '{alert.name}'"
        )
        for template in templates:
            await self._launch(template, rule, action, alert)

    async def _launch(
        self,
        template: "JobTemplate",
        rule: HealingRule,
        action: JobAction,
        alert: Alert,
    ) -> None:
        extra_vars = dict(action.extra_vars)
        extra_vars["alert"] = alert.to_document()

        job_id = await self._launcher.launch(template.id, extra_vars, action.limit)
        logger.info(
            f"Request to launch AWX job from template '{template.name}' has been sent, "
            f"job identifier is '{job_id}'"
        )
        self._metrics.action_started("AWXJob", template.name, rule.name)
        self._active_jobs.track(job_id, rule, template.name)
