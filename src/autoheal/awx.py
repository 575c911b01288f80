"""Asynchronous client for the AWX REST API."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from autoheal.errors import JobLaunchError, JobStatusError
from autoheal.models import AWXConfig, JobStatus


@dataclass(frozen=True)
class JobTemplate:
    """Job template as returned by the AWX server."""

    id: int
    name: str


def api_url(address: str) -> str:
    """Normalize the AWX address to the root of its API.

    Both ``https://awx.example.com`` and ``https://awx.example.com/api/`` give
    ``https://awx.example.com/api``.
    """
    url = address.strip().rstrip("/")
    if not url.endswith("/api"):
        url = f"{url}/api"
    return url


class AWXClient:
    """Launches job templates and reports job status."""

    def __init__(
        self,
        address: str,
        username: str | None = None,
        password: str | None = None,
        token: str | None = None,
        proxy: str | None = None,
        ca_file: str | None = None,
        insecure: bool = False,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            address: URL of the AWX server, with or without the ``/api`` suffix.
            username: User for basic authentication.
            password: Password for basic authentication.
            token: OAuth token, takes precedence over the user and password.
            proxy: URL of the proxy used to reach the server.
            ca_file: CA bundle used to verify the server certificate.
            insecure: Skip verification of the server certificate.
            timeout: Timeout for each request, in seconds.
            transport: Transport to use instead of the network one.
        """
        if not address:
            raise ValueError("AWX address is required")

        self.base_url = api_url(address)

        headers = {"Accept": "application/json"}
        auth = None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        elif username:
            auth = httpx.BasicAuth(username, password or "")

        verify: bool | str = True
        if insecure:
            verify = False
        elif ca_file:
            verify = ca_file

        kwargs: dict[str, Any] = {}
        if transport is not None:
            kwargs["transport"] = transport
        elif proxy:
            kwargs["proxy"] = proxy

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            auth=auth,
            verify=verify,
            timeout=timeout,
            **kwargs,
        )

    @classmethod
    def from_config(cls, config: AWXConfig, **kwargs: Any) -> "AWXClient":
        """Create a client from the AWX section of the configuration."""
        return cls(
            address=config.address,
            username=config.credentials.username,
            password=config.credentials.password,
            token=config.credentials.token,
            proxy=config.proxy,
            ca_file=config.ca_file,
            insecure=config.insecure,
            **kwargs,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "AWXClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def find_templates(self, project: str, name: str) -> list[JobTemplate]:
        """Find the job templates with the given name inside a project."""
        params = {"name": name}
        if project:
            params["project__name"] = project

        try:
            response = await self._client.get("/v2/job_templates/", params=params)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise JobLaunchError(f"Can't retrieve job template '{name}': {e}") from e

        templates = [
            JobTemplate(id=int(item["id"]), name=item.get("name", name))
            for item in response.json().get("results", [])
        ]
        logger.debug(f"Found {len(templates)} job templates named '{name}' in project '{project}'")
        return templates

    async def launch(
        self,
        template_id: int,
        extra_vars: dict[str, Any],
        limit: str | None = None,
    ) -> int:
        """Launch a job from a template.

        Returns:
            Identifier of the new job.
        """
        body: dict[str, Any] = {"extra_vars": extra_vars}
        if limit:
            body["limit"] = limit

        try:
            response = await self._client.post(f"/v2/job_templates/{template_id}/launch/", json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise JobLaunchError(
                f"AWX refused to launch template {template_id}: "
                f"{e.response.status_code} {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise JobLaunchError(f"Can't launch template {template_id}: {e}") from e

        data = response.json()
        job_id = data.get("job", data.get("id"))
        if job_id is None:
            raise JobLaunchError(f"AWX didn't return a job id for template {template_id}")
        return int(job_id)

    async def job_status(self, job_id: int) -> JobStatus:
        """Retrieve the status of a job."""
        try:
            response = await self._client.get(f"/v2/jobs/{job_id}/")
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise JobStatusError(f"Can't retrieve job {job_id}: {e}") from e

        status = response.json().get("status", "")
        try:
            return JobStatus(status)
        except ValueError:
            raise JobStatusError(f"Job {job_id} has unknown status '{status}'") from None
