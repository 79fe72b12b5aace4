"""Abstract base classes for image sources and vulnerability sources."""

import logging
from abc import ABC, abstractmethod
from typing import List, Tuple

from vulnrelay.schemas.vulnerability import ImageRef, VulnerabilityResult
from vulnrelay.services.providers.image_uri import parse_image_uri

logger = logging.getLogger(__name__)


class ImageSource(ABC):
    """Supplies the list of images currently running in the environment.

    Each implementation must inherit from this class and implement
    discover_images(). Failures are reported by raising DiscoveryError.
    """

    # Source identifier used in configuration and logging
    name: str = "base"

    @abstractmethod
    async def discover_images(self) -> List[ImageRef]:
        """List the images of interest.

        Returns:
            Freshly built ImageRef list, one per (image, placement)

        Raises:
            DiscoveryError: If the images cannot be listed
        """
        pass

    def is_registry_image(self, image_uri: str) -> bool:
        """Whether the image belongs to a registry this source cares about."""
        return bool(image_uri)

    async def close(self) -> None:
        """Release resources held by the source."""
        return None


class VulnerabilitySource(ABC):
    """Returns vulnerability scan results for a single image.

    Failures are reported by raising FetchError.
    """

    name: str = "base"

    @abstractmethod
    async def get_vulnerabilities(self, image_uri: str) -> VulnerabilityResult:
        """Get vulnerability data for an image.

        Args:
            image_uri: Full image URI as reported by the image source

        Returns:
            VulnerabilityResult whose image_uri equals the requested URI

        Raises:
            FetchError: If the backend has no usable data for the image
        """
        pass

    def parse_image_uri(self, image_uri: str) -> Tuple[str, str]:
        """Split an image URI into (repository, tag).

        Raises:
            ImageURIError: If the URI cannot be parsed
        """
        return parse_image_uri(image_uri)

    async def close(self) -> None:
        """Release resources held by the source."""
        return None
