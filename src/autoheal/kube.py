"""Minimal Kubernetes API client used to create batch jobs."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import httpx
from loguru import logger

from autoheal.errors import BatchJobError, JobAlreadyExists
from autoheal.models import KubernetesConfig

SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")


class KubeClient:
    """Creates jobs through the ``batch/v1`` API."""

    def __init__(
        self,
        address: str,
        token: str | None = None,
        ca_file: str | None = None,
        insecure: bool = False,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.address = address.rstrip("/")

        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        verify: bool | str = True
        if insecure:
            verify = False
        elif ca_file:
            verify = ca_file

        kwargs: dict[str, Any] = {}
        if transport is not None:
            kwargs["transport"] = transport

        self._client = httpx.AsyncClient(
            base_url=self.address,
            headers=headers,
            verify=verify,
            timeout=timeout,
            **kwargs,
        )

    @classmethod
    def from_config(
        cls,
        config: KubernetesConfig,
        service_account_dir: Path = SERVICE_ACCOUNT_DIR,
        **kwargs: Any,
    ) -> "KubeClient":
        """Create a client, filling the gaps of the configuration from the
        in-cluster service account.

        Raises:
            BatchJobError: If there is no way to find the API server.
        """
        address = config.address
        if not address:
            host = os.environ.get("KUBERNETES_SERVICE_HOST")
            port = os.environ.get("KUBERNETES_SERVICE_PORT", "443")
            if not host:
                raise BatchJobError(
                    "Kubernetes address isn't configured and not running inside a cluster"
                )
            address = f"https://{host}:{port}"

        token = config.token
        token_file = service_account_dir / "token"
        if not token and token_file.exists():
            token = token_file.read_text().strip()

        ca_file = config.ca_file
        default_ca = service_account_dir / "ca.crt"
        if not ca_file and default_ca.exists():
            ca_file = str(default_ca)

        logger.debug(f"Using Kubernetes API at {address}")
        return cls(address, token=token, ca_file=ca_file, insecure=config.insecure, **kwargs)

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "KubeClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def create_job(self, namespace: str, manifest: dict[str, Any]) -> dict[str, Any]:
        """Create a job in a namespace.

        Returns:
            The job as stored by the API server.

        Raises:
            JobAlreadyExists: If a job with the same name already exists.
            BatchJobError: If the job couldn't be created.
        """
        body = dict(manifest)
        body.setdefault("apiVersion", "batch/v1")
        body.setdefault("kind", "Job")
        name = (body.get("metadata") or {}).get("name", "")

        try:
            response = await self._client.post(
                f"/apis/batch/v1/namespaces/{namespace}/jobs", json=body
            )
        except httpx.HTTPError as e:
            raise BatchJobError(f"Can't create job '{name}' in namespace '{namespace}': {e}") from e

        if response.status_code == 409:
            raise JobAlreadyExists(f"Job '{name}' already exists in namespace '{namespace}'")
        if response.is_error:
            raise BatchJobError(
                f"Can't create job '{name}' in namespace '{namespace}': "
                f"{response.status_code} {response.text}"
            )
        return response.json()
