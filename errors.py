"""Exceptions raised by the publishing pipeline and mapped to HTTP responses in app.py."""

from typing import Optional


class PublisherError(Exception):
    """Base class for all expected failures."""


class BundleError(PublisherError):
    """The uploaded files cannot be turned into a site (HTTP 400)."""

    status_code = 400

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class UploadTooLargeError(BundleError):
    status_code = 413


class AuthenticationError(PublisherError):
    """Bearer token missing or rejected by the identity provider (HTTP 401)."""

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class DeploymentError(PublisherError):
    """A hosting provider step failed and the deployment cannot continue."""


class GameStoreError(PublisherError):
    """Reading or writing deployment metadata failed."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code
