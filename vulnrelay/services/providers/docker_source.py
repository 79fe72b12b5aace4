"""Image source listing the images of running Docker containers."""

import asyncio
import logging
from typing import List, Optional, Set, Tuple

import docker
from docker.errors import DockerException

from vulnrelay.exceptions import DiscoveryError
from vulnrelay.schemas.vulnerability import ImageRef, Placement
from vulnrelay.services.providers.base import ImageSource

logger = logging.getLogger(__name__)

COMPOSE_PROJECT_LABEL = "com.docker.compose.project"
DEFAULT_NAMESPACE = "docker"


class DockerImageSource(ImageSource):
    """Discovers images from containers running on the local Docker daemon.

    Containers started by Compose are grouped under their project name,
    everything else under "docker".
    """

    name = "docker"

    def __init__(self, client: Optional[docker.DockerClient] = None):
        self._client = client

    def _get_client(self) -> docker.DockerClient:
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    @staticmethod
    def _container_image(container) -> str:
        # Config.Image keeps the reference the container was started with;
        # image.tags may be empty for dangling images
        image = container.attrs.get("Config", {}).get("Image") or ""
        if image and not image.startswith("sha256:"):
            return image
        try:
            tags = container.image.tags
        except DockerException:
            tags = []
        return tags[0] if tags else image

    def _list_images(self) -> List[ImageRef]:
        containers = self._get_client().containers.list()

        images: List[ImageRef] = []
        seen: Set[Tuple[str, str, str]] = set()
        for container in containers:
            uri = self._container_image(container)
            if not uri:
                logger.debug(f"Container {container.name} has no image reference, skipping")
                continue

            labels = container.labels or {}
            placement = Placement(
                namespace=labels.get(COMPOSE_PROJECT_LABEL) or DEFAULT_NAMESPACE,
                workload=container.name,
                workload_type="Container",
            )
            key = (uri, placement.namespace, placement.workload)
            if key in seen:
                continue
            seen.add(key)
            images.append(ImageRef(uri=uri, placement=placement))

        return images

    async def discover_images(self) -> List[ImageRef]:
        logger.info("Discovering images from running Docker containers")

        try:
            images = await asyncio.to_thread(self._list_images)
        except DockerException as e:
            raise DiscoveryError(self.name, f"failed to list containers: {e}") from e

        logger.info(f"Docker discovery completed: {len(images)} images")
        return images

    async def close(self) -> None:
        if self._client is not None:
            await asyncio.to_thread(self._client.close)
            self._client = None
