"""
Domain errors raised by the service layer.

The HTTP layer translates these into responses; batch jobs record them
per item instead of raising.
"""
from typing import Optional


class CondoHubError(Exception):
    """Base class for every error the services raise on purpose"""

    def __init__(self, message: str, resource: Optional[str] = None, resource_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.resource = resource
        self.resource_id = resource_id


class NotFoundError(CondoHubError):
    """Referenced transaction, request or unit does not exist"""

    def __init__(self, resource: str, resource_id):
        super().__init__(f"{resource} {resource_id} not found", resource, resource_id)


class ValidationError(CondoHubError):
    """Malformed input, rejected before anything is written"""


class InvalidStateError(CondoHubError):
    """Operation not allowed from the entity's current status"""


class DuplicateLinkError(CondoHubError):
    """A maintenance request already has a financial transaction"""

    def __init__(self, request_id: int, transaction_id: Optional[int] = None):
        super().__init__(
            f"Maintenance request {request_id} already linked to transaction {transaction_id}",
            "MaintenanceRequest",
            request_id,
        )
        self.transaction_id = transaction_id


class NotificationDispatchError(CondoHubError):
    """Notification could not be stored; never leaves the notification service"""
