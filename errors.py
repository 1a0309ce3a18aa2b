class StorefrontError(Exception):
    """Base error; `status` is the HTTP status the API answers with."""

    status = 500

    def __init__(self, message, status=None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status


class ValidationError(StorefrontError):
    status = 400


class ConfigError(StorefrontError):
    status = 500


class CheckoutError(StorefrontError):
    status = 500


class CatalogStoreError(StorefrontError):
    """The catalog file could not be read or written."""

    status = 500

    def __init__(self, message, upstream_status=None, detail=None):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.detail = detail


class CatalogConflictError(CatalogStoreError):
    """The revision token used for a write is no longer current."""
