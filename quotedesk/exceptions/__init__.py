"""Custom exceptions for the quotedesk application."""


class QuoteDeskError(Exception):
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


class BusinessLogicError(QuoteDeskError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class NotFoundError(QuoteDeskError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class InvalidTransitionError(BusinessLogicError):
    """A quote status change that is not in the transition table."""
    def __init__(self, from_status, to_status):
        self.from_status = from_status
        self.to_status = to_status
        message = f"Action not allowed from current status ({from_status} -> {to_status})"
        super().__init__(message, status_code=409, payload={
            'from_status': from_status, 'to_status': to_status
        })


class CodeNotEligibleError(BusinessLogicError):
    """Promotion code missing, inactive, out of its window or exhausted at evaluation time."""
    def __init__(self, code, reason):
        self.code = code
        self.reason = reason
        super().__init__(f"Promotion code '{code}' rejected: {reason}", payload={
            'code': code, 'reason': reason
        })


class LimitExceededError(BusinessLogicError):
    """Redemption limit violated when committing (lost a race against another quote)."""
    def __init__(self, code_id, limit_name, limit_value):
        self.code_id = code_id
        self.limit_name = limit_name
        self.limit_value = limit_value
        message = f"Promotion code {code_id} reached its {limit_name} limit ({limit_value})"
        super().__init__(message, status_code=409, payload={
            'code_id': code_id, 'limit': limit_name, 'limit_value': limit_value
        })


class DuplicateRedemptionError(BusinessLogicError):
    """A redemption for the same quote/promotion pair was already committed."""
    def __init__(self, quote_id, promotion_id):
        self.quote_id = quote_id
        self.promotion_id = promotion_id
        message = f"Promotion {promotion_id} already redeemed for quote {quote_id}"
        super().__init__(message, status_code=409)


class DuplicateConversionError(BusinessLogicError):
    """A quote that already has an order cannot be converted again."""
    def __init__(self, quote_id, message=None):
        self.quote_id = quote_id
        super().__init__(message or f"Quote {quote_id} was already converted to an order", status_code=409)


class ArithmeticInvariantError(QuoteDeskError):
    """Raised when computed money values break a pricing invariant (a bug, never user input)."""
    def __init__(self, message, payload=None):
        super().__init__(message, 500, payload)
