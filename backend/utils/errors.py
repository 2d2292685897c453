"""
Service-level error taxonomy.
Helpers raise these; main.py turns them into JSON responses with a `message` field.
"""
from fastapi import status


class ServiceError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST


class Forbidden(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND


class InvalidTransition(ServiceError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot change payment status from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested


class UpstreamError(ServiceError):
    status_code = status.HTTP_502_BAD_GATEWAY
