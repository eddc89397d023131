"""Error taxonomy for the step-data access workflow.

Every provider call is wrapped where it is issued and converted into one of
these kinds. The controller records them on the terminal outcome; none of
them escape to the hosting application.
"""

from __future__ import annotations


class StepsWorkflowError(Exception):
    """Base exception for workflow failures."""

    kind = "workflow_error"


class ProviderUnavailable(StepsWorkflowError):
    """No provider can serve the API, or its handle could not be created."""

    kind = "provider_unavailable"


class ProviderOutdated(StepsWorkflowError):
    """The provider is installed but below the minimum supported version."""

    kind = "provider_outdated"


class PermissionDenied(StepsWorkflowError):
    """Required capabilities were not granted."""

    kind = "permission_denied"


class DataOperationFailed(StepsWorkflowError):
    """An aggregate or insert call failed at the provider."""

    kind = "data_operation_failed"


class UnexpectedWorkflowError(StepsWorkflowError):
    """An error outside the taxonomy was caught at a state boundary."""

    kind = "unexpected"
