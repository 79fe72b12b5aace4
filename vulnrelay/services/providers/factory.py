"""Build image and vulnerability sources from the service settings."""

import logging

from vulnrelay.config import Settings
from vulnrelay.exceptions import ConfigurationError
from vulnrelay.services.providers.base import ImageSource, VulnerabilitySource
from vulnrelay.services.providers.docker_source import DockerImageSource
from vulnrelay.services.providers.kubernetes_source import KubernetesImageSource
from vulnrelay.services.providers.local import LocalFileImageSource
from vulnrelay.services.providers.mock import MockImageSource, MockVulnerabilitySource
from vulnrelay.services.providers.vulnforge import VulnForgeVulnerabilitySource

logger = logging.getLogger(__name__)


def create_image_source(settings: Settings) -> ImageSource:
    """Select the image source for the configured mode.

    Mock mode wins over MODE.

    Raises:
        ConfigurationError: If the mode is unknown or incompletely configured
    """
    if settings.mock_mode:
        logger.info("Using mock image source")
        return MockImageSource()

    if settings.mode == "cluster":
        logger.info("Using Kubernetes image source")
        return KubernetesImageSource(namespaces=settings.kube_namespaces)

    if settings.mode == "docker":
        logger.info("Using Docker image source")
        return DockerImageSource()

    if settings.mode == "local":
        if not settings.image_list_file:
            raise ConfigurationError("IMAGE_LIST_FILE is required when MODE=local")
        logger.info(f"Using local file image source: {settings.image_list_file}")
        return LocalFileImageSource(settings.image_list_file)

    raise ConfigurationError(f"unsupported mode: {settings.mode!r}")


def create_vulnerability_source(settings: Settings) -> VulnerabilitySource:
    """Select the vulnerability source.

    Raises:
        ConfigurationError: If no scanner backend is configured
    """
    if settings.mock_mode:
        logger.info("Using mock vulnerability source")
        return MockVulnerabilitySource()

    if settings.vulnforge_url:
        logger.info(f"Using VulnForge vulnerability source: {settings.vulnforge_url}")
        return VulnForgeVulnerabilitySource(
            base_url=settings.vulnforge_url,
            auth_type=settings.vulnforge_auth_type,
            api_key=settings.vulnforge_api_key,
            username=settings.vulnforge_username,
            password=settings.vulnforge_password,
            timeout=settings.vulnforge_timeout,
        )

    raise ConfigurationError("no vulnerability source configured (set VULNFORGE_URL)")
