"""Exception types raised by the sitezip pipeline."""

from __future__ import annotations


class SitezipError(Exception):
    """Base exception for all sitezip errors."""


class ValidationError(SitezipError):
    """The workflow payload is missing or malformed."""


class FetchFailure(SitezipError):
    """A remote document answered with a non-success HTTP status."""

    def __init__(self, status_code: int, reason: str = "") -> None:
        self.status_code = status_code
        self.reason = reason
        super().__init__(f"Failed to fetch sitemap: {status_code} {reason}".rstrip())


class EmptyResult(SitezipError):
    """A step produced nothing to hand on to the next one."""


class AllPagesFailed(EmptyResult):
    """Every page in the run was skipped."""


class StorageFailure(SitezipError):
    """The object store did not accept the archive."""


class InstanceNotFound(SitezipError):
    """No workflow instance exists with the requested id."""

    def __init__(self, instance_id: str) -> None:
        self.instance_id = instance_id
        super().__init__(f"Workflow instance not found: {instance_id!r}")


class StepTimeout(SitezipError):
    """A step attempt ran past its configured timeout."""


class StepCancelled(SitezipError):
    """A step attempt stopped early because its deadline passed."""


class StepFailed(SitezipError):
    """A durable step exhausted its retries."""

    def __init__(self, step_name: str, cause: BaseException) -> None:
        self.step_name = step_name
        self.cause = cause
        super().__init__(f"{step_name} failed: {cause}")
