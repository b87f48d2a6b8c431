class CertSyncError(Exception):
    """Base class for errors raised by acme_certsync."""


class ValidationError(CertSyncError, ValueError):
    """Exception raised when a record is missing a required field."""

    def __init__(self, record, field):
        self.record = record
        self.field = field
        super().__init__(f"Must specify {field} for {record}")


class ProtocolError(CertSyncError):
    """Exception raised when the ACME endpoint refuses or fails a request."""

    def __init__(self, message, status_code=None, detail=None):
        self.status_code = status_code
        self.detail = detail
        if status_code is not None:
            message = f"{message} (status code {status_code})"
        super().__init__(message)


class StorageError(CertSyncError):
    """Exception raised when the store backend fails."""

    def __init__(self, key, message):
        self.key = key
        super().__init__(f"Storage error for '{key}': {message}")


class SyncError(CertSyncError):
    """Exception raised when the external system cannot be synchronized."""

    def __init__(self, host, message):
        self.host = host
        super().__init__(f"Error syncing host '{host}': {message}")


class RenewalError(CertSyncError):
    """Exception raised when one or more certificates could not be renewed."""

    def __init__(self, domains, renewed=None):
        self.domains = list(domains)
        self.renewed = list(renewed or [])
        super().__init__(f"Failed to renew certificates for: {', '.join(self.domains)}")
