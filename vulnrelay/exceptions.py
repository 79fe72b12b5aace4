"""Custom exceptions for VulnRelay."""

from typing import Optional


class ConfigurationError(Exception):
    """Raised when the service configuration is missing or invalid.

    Fatal at startup: the process refuses to build providers or the
    collection engine from a configuration that fails validation.
    """
    pass


class DiscoveryError(Exception):
    """Raised when an image source cannot list the current images.

    A discovery failure aborts the whole collection cycle. The previously
    published snapshot stays authoritative until a later cycle succeeds.
    """

    def __init__(self, source: str, message: str):
        """Initialize the exception.

        Args:
            source: Name of the image source that failed
            message: Human readable failure description
        """
        self.source = source
        super().__init__(f"{source}: {message}")


class FetchError(Exception):
    """Raised when vulnerability data for a single image cannot be retrieved.

    Isolated to that image: the cycle continues and the image is simply
    absent from the snapshot it publishes.
    """

    def __init__(self, image_uri: str, message: str, status_code: Optional[int] = None):
        """Initialize the exception.

        Args:
            image_uri: Image the fetch was attempted for
            message: Human readable failure description
            status_code: HTTP status returned by the scanning backend, if any
        """
        self.image_uri = image_uri
        self.status_code = status_code
        super().__init__(f"{image_uri}: {message}")


class ImageURIError(ValueError):
    """Raised when an image URI cannot be split into repository and tag."""
    pass
