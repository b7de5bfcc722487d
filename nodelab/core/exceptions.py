# nodelab/core/exceptions.py
"""Error taxonomy for node lifecycle operations.

Each error carries the HTTP status the API answers with. Failures of
best-effort steps (process termination, gateway calls) are never raised;
they are logged where they happen.
"""


class ConfigError(RuntimeError):
    """Raised when an environment override cannot be parsed."""


class NodeLabError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(NodeLabError):
    """Missing or invalid input."""

    status_code = 400


class NotFoundError(NodeLabError):
    """Unknown node id."""

    status_code = 404


class ConflictError(NodeLabError):
    """Operation is not valid for the node's current status."""

    status_code = 400


class ResourceError(NodeLabError):
    """An external resource (base image, qemu-img, hypervisor) failed.

    ``steps`` lists the sub-steps the operation completed before failing.
    Those side effects are not rolled back.
    """

    status_code = 500

    def __init__(self, message: str, steps: list[str] | None = None):
        super().__init__(message)
        self.steps = list(steps or [])


class OverlayCreationError(ResourceError):
    pass


class ProcessStartError(ResourceError):
    pass


class DegradedRegistrationWarning(UserWarning):
    """A node reached running without a gateway console."""
