"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class AccountingAPIError(DomainException):
    """Accounting platform returned an error or is unavailable"""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AccountingAuthError(AccountingAPIError):
    """Credentials were rejected or could not be refreshed"""

    pass


class InvoiceMutationError(AccountingAPIError):
    """The platform refused to modify an invoice (validation, locked state)"""

    pass


class InvalidInvoiceDataError(DomainException):
    """Invoice payload is malformed or missing required fields"""

    pass


class ConfigNotFoundError(DomainException):
    """No interest configuration exists for the contact"""

    pass


class InactiveConfigError(DomainException):
    """Interest configuration exists but is switched off"""

    pass
