"""Service-level errors.

Every error a service raises on purpose derives from ``ServiceError`` (itself a
``ValueError``), carries a machine-readable ``code`` and the HTTP status the API
layer answers with. Services raise before mutating anything.
"""


class ServiceError(ValueError):
    status_code = 400
    code = 'SERVICE_ERROR'

    def __init__(self, message, code=None, **details):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details

    def to_dict(self):
        payload = {'error': self.message, 'code': self.code}
        payload.update(self.details)
        return payload


class ValidationError(ServiceError):
    """Malformed input or a violated business rule (duration, past start, ...)."""
    status_code = 400
    code = 'VALIDATION_ERROR'


class PermissionDeniedError(ServiceError):
    status_code = 403
    code = 'FORBIDDEN'


class NotFoundError(ServiceError):
    status_code = 404
    code = 'NOT_FOUND'

    def __init__(self, entity, identifier):
        super().__init__(f"{entity} not found.", entity=entity, id=identifier)


class ConflictError(ServiceError):
    """Slot overlap, double booking, a lost race or a blocked extension."""
    status_code = 409
    code = 'CONFLICT'


class InvalidTransitionError(ConflictError):
    code = 'INVALID_TRANSITION'

    def __init__(self, entity, current, target, message=None):
        current = getattr(current, 'value', current)
        target = getattr(target, 'value', target)
        super().__init__(
            message or f"Cannot move {entity} from '{current}' to '{target}'.",
            entity=entity,
            current_status=current,
        )
        self.current = current
        self.target = target
