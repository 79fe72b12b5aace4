"""Image source reading a static list of image URIs from a JSON file."""

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Union

from vulnrelay.exceptions import DiscoveryError
from vulnrelay.schemas.vulnerability import ImageRef, Placement
from vulnrelay.services.providers.base import ImageSource
from vulnrelay.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

LOCAL_PLACEMENT = Placement(namespace="local", workload="local", workload_type="Local")


class LocalFileImageSource(ImageSource):
    """Discovers images from a JSON array of image URIs.

    The file is re-read on every discovery so edits take effect on the next
    collection cycle without a restart.

    Example file:
        ["registry.local/app:v1", "nginx:1.25"]
    """

    name = "local"

    def __init__(self, file_path: Union[str, Path]):
        self.file_path = Path(file_path)

    async def discover_images(self) -> List[ImageRef]:
        logger.info(f"Loading images from file: {self.file_path}")

        try:
            raw = await asyncio.to_thread(self.file_path.read_text, encoding="utf-8")
        except OSError as e:
            raise DiscoveryError(self.name, f"failed to read image file {self.file_path}: {e}") from e

        try:
            uris = json.loads(raw)
        except json.JSONDecodeError as e:
            raise DiscoveryError(self.name, f"failed to parse image file {self.file_path}: {e}") from e

        if not isinstance(uris, list):
            raise DiscoveryError(
                self.name, f"image file {self.file_path} must contain a JSON array of strings"
            )

        images: List[ImageRef] = []
        for uri in uris:
            if not isinstance(uri, str):
                logger.warning(f"Skipping non-string entry in image file: {sanitize_log_message(repr(uri))}")
                continue
            uri = uri.strip()
            if not uri:
                continue
            images.append(ImageRef(uri=uri, placement=LOCAL_PLACEMENT))

        logger.info(f"Loaded {len(images)} images from local file")
        return images
