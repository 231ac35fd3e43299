from typing import Optional


class ScrapeError(Exception):
    """Base class for every failure the scraper raises on purpose."""


class AuthenticationError(ScrapeError):
    """Login did not leave the login surface, or landed off the expected host."""


class NavigationTimeoutError(ScrapeError):
    def __init__(self, url: str, detail: str = "page did not reach ready state"):
        self.url = url
        self.detail = detail
        super().__init__(f"Navigation timeout for {url}: {detail}")


class ExtractionError(ScrapeError):
    """One field on a detail page could not be read."""

    def __init__(self, field: str, cause: Optional[BaseException] = None):
        self.field = field
        self.cause = cause
        reason = f"{type(cause).__name__}: {cause}" if cause else "no content"
        super().__init__(f"Extraction failed for '{field}' ({reason})")


class ProductValidationError(ScrapeError):
    def __init__(self, product_name: str, message: str):
        self.product_name = product_name
        self.message = message
        super().__init__(f"Validation failed for {product_name}: {message}")


class PersistenceError(ScrapeError):
    def __init__(self, operation: str, detail: object):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Store {operation} failed: {detail}")
