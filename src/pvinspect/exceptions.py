"""Exceptions for pv-inspect."""

from __future__ import annotations

from datetime import datetime
from typing import Self, override

from kubernetes_asyncio.client import ApiException

__all__ = [
    "ClaimNotFoundError",
    "CredentialGenerationError",
    "HelperProcessError",
    "InvalidTemplateError",
    "KubernetesError",
    "OperationTimeoutError",
    "PVInspectError",
    "PodCreationError",
    "PodDeletionError",
    "PodFailedError",
    "ReadinessTimeoutError",
    "SessionIOError",
    "TemplateNotFoundError",
    "ValidationError",
]


class PVInspectError(Exception):
    """Base class for all errors reported by pv-inspect.

    The command-line interface reports any exception of this class as a
    single-line error and exits with a failure status instead of showing a
    traceback.
    """


class ValidationError(PVInspectError):
    """The inspection request cannot be satisfied.

    Raised before any pod is created.
    """


class ClaimNotFoundError(ValidationError):
    """The named persistent volume claim does not exist.

    Parameters
    ----------
    name
        Name of the claim.
    namespace
        Namespace in which the claim was looked for.
    """

    def __init__(self, name: str, namespace: str) -> None:
        msg = f"Persistent volume claim {namespace}/{name} not found"
        super().__init__(msg)
        self.name = name
        self.namespace = namespace


class TemplateNotFoundError(ValidationError):
    """No pod template with the requested name is available."""


class InvalidTemplateError(ValidationError):
    """A pod template could not be parsed or cannot serve the request."""


class CredentialGenerationError(PVInspectError):
    """Generating or storing the session key pair failed."""


class KubernetesError(PVInspectError):
    """An API call to Kubernetes failed.

    Parameters
    ----------
    message
        Summary of error.
    namespace
        Namespace of object being acted on.
    name
        Name of object being acted on.
    kind
        Kind of object being acted on.
    status
        Status code of failure, if any.
    body
        Body of failure message, if any.
    """

    @classmethod
    def from_exception(
        cls,
        message: str,
        exc: ApiException,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
    ) -> Self:
        """Create an exception from a Kubernetes API exception.

        Parameters
        ----------
        message
            Brief explanation of what was being attempted.
        exc
            Kubernetes API exception.
        kind
            Kind of object being acted on.
        namespace
            Namespace of object being acted on.
        name
            Name of object being acted on.

        Returns
        -------
        KubernetesError
            Newly-created exception.
        """
        return cls(
            message,
            kind=kind,
            namespace=namespace,
            name=name,
            status=exc.status,
            body=exc.body if exc.body else exc.reason,
        )

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.status = status
        self.body = body

    @override
    def __str__(self) -> str:
        result = self._summary()
        if self.body:
            result += f": {self.body}"
        return result

    def _summary(self) -> str:
        """Summarize the exception in a single line."""
        result = self.message
        if self.name or self.kind or self.status:
            result += " ("
            if self.name:
                kind = f"{self.kind} " if self.kind else ""
                if self.namespace:
                    result += f"{kind}{self.namespace}/{self.name}"
                else:
                    result += f"{kind}{self.name}"
                if self.status:
                    result += ", "
            elif self.kind:
                result += self.kind
                if self.status:
                    result += ", "
            if self.status:
                result += f"status {self.status}"
            result += ")"
        return result


class PodCreationError(KubernetesError):
    """Kubernetes rejected the inspection pod."""


class PodDeletionError(PVInspectError):
    """Neither relabeling nor deleting the inspection pod succeeded.

    Parameters
    ----------
    name
        Name of the pod.
    namespace
        Namespace of the pod.
    patch_error
        Failure from the attempt to relabel the pod, if one was made.
    delete_error
        Failure from the attempt to delete the pod.
    """

    def __init__(
        self,
        name: str,
        namespace: str,
        *,
        patch_error: KubernetesError | None,
        delete_error: KubernetesError,
    ) -> None:
        msg = f"Unable to delete or relabel pod {namespace}/{name}"
        super().__init__(msg)
        self.name = name
        self.namespace = namespace
        self.patch_error = patch_error
        self.delete_error = delete_error

    @override
    def __str__(self) -> str:
        result = f"{self.args[0]}: {self.delete_error}"
        if self.patch_error:
            result += f" (relabel: {self.patch_error})"
        return result


class OperationTimeoutError(PVInspectError):
    """Wraps `TimeoutError` with additional context.

    Parameters
    ----------
    operation
        Operation that timed out.
    started_at
        Start time of the operation.
    failed_at
        Time at which the operation timed out.
    """

    def __init__(
        self, operation: str, *, started_at: datetime, failed_at: datetime
    ) -> None:
        self.operation = operation
        self.started_at = started_at
        self.failed_at = failed_at
        elapsed = failed_at - started_at
        msg = f"{operation} timed out after {elapsed.total_seconds():.1f}s"
        super().__init__(msg)


class ReadinessTimeoutError(OperationTimeoutError):
    """The inspection pod did not become ready in time."""


class PodFailedError(PVInspectError):
    """The inspection pod reached a state from which it cannot become ready.

    Parameters
    ----------
    name
        Name of the pod.
    namespace
        Namespace of the pod.
    reason
        Phase or reason the pod reported.
    """

    def __init__(self, name: str, namespace: str, reason: str) -> None:
        super().__init__(f"Pod {namespace}/{name} failed: {reason}")
        self.name = name
        self.namespace = namespace
        self.reason = reason


class SessionIOError(PVInspectError):
    """Relaying bytes between the terminal and the pod failed."""


class HelperProcessError(PVInspectError):
    """A local helper program could not be started or failed to start up."""
