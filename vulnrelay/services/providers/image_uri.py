"""Image URI parsing shared by vulnerability sources and the metrics layer."""

import re
from typing import Tuple

from vulnrelay.exceptions import ImageURIError

_REFERENCE_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9._/:@-]*$")


def split_registry(image_uri: str) -> Tuple[str, str]:
    """Split off the registry host, if the URI has one.

    The first path segment is a registry when it contains a dot or a port
    separator, or is "localhost" (same rule the docker CLI uses).

    Returns:
        (registry, remainder); registry is "" when absent
    """
    first, sep, rest = image_uri.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        return first, rest
    return "", image_uri


def parse_image_uri(image_uri: str) -> Tuple[str, str]:
    """Parse an image URI into repository and tag.

    Accepts ``[registry/]repository[:tag][@digest]``. The registry host is
    dropped, a missing tag defaults to "latest" and a digest-only reference
    uses the digest as its tag.

    Args:
        image_uri: Image URI (e.g., "123.dkr.ecr.us-east-1.amazonaws.com/api:v1")

    Returns:
        Tuple of (repository, tag)

    Raises:
        ImageURIError: If the URI is empty or malformed

    Examples:
        >>> parse_image_uri("ghcr.io/org/app:1.2.3")
        ('org/app', '1.2.3')
        >>> parse_image_uri("nginx")
        ('nginx', 'latest')
    """
    if not image_uri or not _REFERENCE_PATTERN.match(image_uri):
        raise ImageURIError(f"invalid image URI format: {image_uri!r}")

    _, remainder = split_registry(image_uri)

    name, at, digest = remainder.partition("@")
    if at and not digest:
        raise ImageURIError(f"invalid image URI format, empty digest: {image_uri!r}")

    repository, colon, tag = name.rpartition(":")
    if not colon:
        repository, tag = name, ""
    elif "/" in tag:
        raise ImageURIError(f"invalid image URI format: {image_uri!r}")

    if not repository or (colon and not tag):
        raise ImageURIError(f"invalid image URI format, missing tag: {image_uri!r}")

    if not tag:
        tag = digest or "latest"

    return repository, tag
