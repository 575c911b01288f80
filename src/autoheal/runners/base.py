"""Interfaces between the healer and the systems that execute actions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

from autoheal.models import Action, Alert, HealingRule, JobStatus

if TYPE_CHECKING:
    from autoheal.awx import JobTemplate


class ActionRunner(Protocol):
    """Executes one kind of healing action."""

    async def run_action(self, rule: HealingRule, action: Action, alert: Alert) -> None:
        """Execute the already expanded action of a rule.

        Raises:
            ActionError: If the action couldn't be executed.
        """
        ...


class JobLauncher(Protocol):
    """Launches jobs from AWX job templates."""

    async def find_templates(self, project: str, name: str) -> list["JobTemplate"]: ...

    async def launch(
        self,
        template_id: int,
        extra_vars: dict[str, Any],
        limit: str | None = None,
    ) -> int: ...


class JobStatusQuerier(Protocol):
    """Reports the status of previously launched jobs."""

    async def job_status(self, job_id: int) -> JobStatus: ...


class BatchJobCreator(Protocol):
    """Creates Kubernetes batch jobs."""

    async def create_job(self, namespace: str, manifest: dict[str, Any]) -> dict[str, Any]:
        """Create the job.

        Raises:
            JobAlreadyExists: If a job with the same name exists in the namespace.
        """
        ...
