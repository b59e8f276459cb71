class ReconciliationError(Exception):
    """Base class for failures surfaced by the identify pipeline."""


class ValidationError(ReconciliationError):
    """Neither an email nor a phone number was submitted."""

    def __init__(self, message: str = "At least one of email or phoneNumber is required"):
        super().__init__(message)


class StoreError(ReconciliationError):
    """A contact store read or write failed. The unit of work is rolled back."""
