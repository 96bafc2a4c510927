"""
Health score pipeline exceptions.
"""


class HealthScoreError(Exception):
    """Base exception for the health score pipeline."""

    def __init__(self, message, client_id=None):
        super().__init__(message)
        self.message = message
        self.client_id = client_id

    def __str__(self):
        if self.client_id is not None:
            return f"{self.__class__.__name__} (client {self.client_id}): {self.message}"
        return f"{self.__class__.__name__}: {self.message}"


class ClientNotFound(HealthScoreError):
    """The referenced client does not exist (or was deleted mid-flight)."""

    def __init__(self, client_id):
        super().__init__('Client not found', client_id=client_id)


class TransientStoreError(HealthScoreError):
    """A store was unreachable or timed out. Safe to retry later."""


class IncidentNotFound(HealthScoreError):
    """The referenced incident does not exist."""

    def __init__(self, incident_id):
        super().__init__('Incident not found')
        self.incident_id = incident_id


class ValidationError(HealthScoreError, ValueError):
    """Caller-supplied input was rejected. Reported to API callers as a 400."""
