"""Custom exceptions for the POS application."""


class PosError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv


class ValidationError(PosError):
    """Malformed input: non-positive amount, missing reference, bad quantity."""
    def __init__(self, message, payload=None):
        super().__init__(message, 400, payload)


class NotFoundError(PosError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class InvalidStateError(PosError):
    """Operation not allowed in the sale's current state."""
    def __init__(self, message, status=None, payload=None):
        payload = dict(payload or ())
        if status is not None:
            payload['sale_status'] = getattr(status, 'value', status)
        super().__init__(message, 409, payload)
        self.status = status


class InsufficientStockError(PosError):
    """Raised when a stock commit would take on-hand quantity below zero."""
    def __init__(self, product_id, required, available):
        message = f"Insufficient stock for product {product_id}: required {required}, available {available}"
        super().__init__(message, 409, {
            'product_id': product_id,
            'required': required,
            'available': available,
        })
        self.product_id = product_id
        self.required = required
        self.available = available


class ConcurrencyConflictError(PosError):
    """The sale changed since it was loaded; reload and retry."""
    def __init__(self, sale_id, expected_version=None, current_version=None):
        message = f"Sale {sale_id} was modified by another operation. Reload and retry."
        payload = {'sale_id': sale_id}
        if current_version is not None:
            payload['current_version'] = current_version
        if expected_version is not None:
            payload['expected_version'] = expected_version
        super().__init__(message, 409, payload)
        self.sale_id = sale_id
