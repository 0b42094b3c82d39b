"""Custom exceptions for the nota point-of-sale core."""


class NotaError(Exception):
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
        rv['error'] = self.__class__.__name__
        return rv


class ValidationError(NotaError):
    """Missing field, value out of range, duplicate tier key or unit name."""
    def __init__(self, message, payload=None):
        super().__init__(message, 400, payload)


class NotFoundError(NotaError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class InsufficientStockError(NotaError):
    """Raised when a reservation exceeds the quantity available for a unit."""
    def __init__(self, product_name, unit, required, available):
        self.product_name = product_name
        self.unit = unit
        self.required = required
        self.available = available
        message = (
            f"Stok tidak cukup untuk {product_name}: "
            f"diminta {required} {unit}, tersedia {available} {unit}"
        )
        super().__init__(message, 409, {
            'unit': unit,
            'required': required,
            'available': available,
        })


class DuplicateKeyError(NotaError):
    """SKU or transaction number collision."""
    def __init__(self, message, payload=None):
        super().__init__(message, 409, payload)


class ReferentialConflictError(NotaError):
    """Delete refused because the record is still referenced elsewhere."""
    def __init__(self, message, payload=None):
        super().__init__(message, 409, payload)


class TransientError(NotaError):
    """Backend or connectivity failure; the whole operation may be retried."""
    def __init__(self, message="Layanan sementara tidak tersedia, coba lagi", payload=None):
        super().__init__(message, 503, payload)


class ConcurrencyConflictError(TransientError):
    """Optimistic-concurrency retries exhausted on a contended row."""
