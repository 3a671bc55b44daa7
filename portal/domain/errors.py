from __future__ import annotations


class WorkOrderError(Exception):
    pass


class UnauthenticatedError(WorkOrderError):
    pass


class UnauthorizedError(WorkOrderError):
    pass


class NotFoundError(WorkOrderError):
    pass


class InvalidTransitionError(WorkOrderError):
    pass


class PayloadValidationError(WorkOrderError):
    pass


class UnsupportedMediaError(WorkOrderError):
    pass


class PayloadTooLargeError(WorkOrderError):
    pass
