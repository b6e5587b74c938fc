class ServiceError(Exception):
    """Base error raised by the service layer and rendered by the API."""
    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFound(ServiceError):
    status_code = 404


class ValidationError(ServiceError):
    status_code = 400

    def __init__(self, message, field_errors=None):
        super().__init__(message)
        self.field_errors = field_errors or {}


class ConfigurationMissing(ServiceError):
    status_code = 500


class EmailDeliveryError(ServiceError):
    status_code = 502


class EmailMismatch(ServiceError):
    status_code = 403


class AccessDenied(ServiceError):
    status_code = 403


class InvalidStatusTransition(ServiceError):
    status_code = 409


class InviteAlreadyUsed(ServiceError):
    status_code = 409


class ConcurrentUpdateError(ServiceError):
    status_code = 409
