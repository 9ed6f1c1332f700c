class RentalsError(Exception):
    pass


class NotFoundError(RentalsError):
    pass


class InvoiceValidationError(RentalsError):
    """Invoice input rejected before anything is persisted."""

    def __init__(self, message: str, field: str = None):
        super().__init__(message)
        self.field = field


class MissingRentAmountError(InvoiceValidationError):
    pass


class DuplicateInvoiceError(RentalsError):
    def __init__(self, key, existing=None):
        super().__init__(f"Invoice already issued for {key}")
        self.key = key
        self.existing = existing


class InvoiceNumberAllocationError(RentalsError):
    pass


class StoreUnavailableError(RentalsError):
    pass


class UniqueConstraintError(RentalsError):
    def __init__(self, collection: str, details=None):
        super().__init__(f"Unique key violated in {collection}: {details}")
        self.collection = collection
        self.details = details


class ExternalServiceError(RentalsError):
    pass
