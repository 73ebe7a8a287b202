# errors.py
import json
from typing import Optional

from kubernetes.client.exceptions import ApiException


class HarnessError(Exception):
    """Base class for every failure raised by the harness."""


class ConfigError(HarnessError):
    pass


class KubernetesConfigurationError(HarnessError):
    pass


class ApiError(HarnessError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class SubmissionError(ApiError):
    """The API server rejected a workload submission."""


class NotFoundError(ApiError):
    """The workload does not exist (or no longer does).

    After a deletion this is the expected outcome, so callers decide
    whether it is a failure.
    """


class WaitTimeoutError(HarnessError, TimeoutError):
    def __init__(self, identity: str, predicate_name: str, elapsed: float):
        super().__init__(
            f"timed out after {elapsed:.1f}s waiting for {identity} to satisfy {predicate_name}"
        )
        self.identity = identity
        self.predicate_name = predicate_name
        self.elapsed = elapsed


class ChannelClosedError(HarnessError):
    """The observation channel ended before the awaited condition was seen."""

    def __init__(self, identity: str, predicate_name: str, cause: Optional[BaseException] = None):
        msg = f"observation channel for {identity} closed before {predicate_name} was satisfied"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)
        self.identity = identity
        self.predicate_name = predicate_name
        self.cause = cause


class TeardownError(HarnessError):
    pass


class StepFailure(HarnessError):
    def __init__(self, step: str, cause: BaseException):
        super().__init__(f"step '{step}' failed: {cause}")
        self.step = step
        self.cause = cause


def describe_api_exception(e: ApiException) -> str:
    message = f"K8s API error: {e.reason} (status: {e.status})"
    if e.body:
        try:
            details = json.loads(e.body)
            message += f" Details: {details.get('message', e.body)}"
        except (json.JSONDecodeError, TypeError, AttributeError):
            pass
    return message


def translate_api_exception(e: ApiException, what: str) -> ApiError:
    """Map an ApiException raised while doing `what` onto the harness taxonomy."""
    message = f"{what}: {describe_api_exception(e)}"
    if e.status == 404:
        return NotFoundError(message, status=e.status)
    return ApiError(message, status=e.status)
