"""Exceptions raised by the autoheal core and its action runners."""

from __future__ import annotations


class AutohealError(Exception):
    """Base class for autoheal errors."""

    pass


class RuleMatchError(AutohealError):
    """A rule pattern could not be evaluated against an alert."""

    def __init__(self, rule: str, key: str, pattern: str, cause: Exception):
        self.rule = rule
        self.key = key
        self.pattern = pattern
        self.cause = cause
        super().__init__(
            f"Rule '{rule}' has an invalid pattern '{pattern}' for key '{key}': {cause}"
        )


class TemplateExpansionError(AutohealError):
    """A template inside an action could not be rendered."""

    def __init__(self, source: str, cause: Exception):
        self.source = source
        self.cause = cause
        super().__init__(f"Can't expand template '{source}': {cause}")


class ActionError(AutohealError):
    """An action runner failed to execute an action."""

    pass


class TemplateNotFoundError(ActionError):
    """The AWX job template referenced by an action doesn't exist."""

    pass


class JobLaunchError(ActionError):
    """The AWX server refused or failed to launch a job."""

    pass


class JobStatusError(ActionError):
    """The status of an AWX job could not be retrieved."""

    pass


class BatchJobError(ActionError):
    """A Kubernetes batch job could not be created."""

    pass


class JobAlreadyExists(BatchJobError):
    """The Kubernetes API reported that the batch job already exists."""

    pass
