"""Data model for discovered images and their vulnerability scan results.

Every model is frozen. A result handed out by the cache or the published
snapshot is shared between the collection cycle and any number of readers,
so nothing may mutate it after construction. Collections inside a result
are immutable too: findings is a tuple and severity_counts a read-only
mapping.
"""

from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


class Placement(BaseModel):
    """Where a discovered image runs (namespace/workload/kind).

    Carried through the engine unchanged and only used to label results.
    """

    model_config = ConfigDict(frozen=True)

    namespace: str = ""
    workload: str = ""
    workload_type: str = ""


class ImageRef(BaseModel):
    """A container image reported by an image source."""

    model_config = ConfigDict(frozen=True)

    uri: str
    placement: Placement = Field(default_factory=Placement)


class VulnerabilityFinding(BaseModel):
    """A single vulnerability finding reported by the scanning backend."""

    model_config = ConfigDict(frozen=True)

    name: str = ""  # CVE ID
    description: str = ""
    severity: str = ""
    package_name: str = ""
    package_version: str = ""
    fix_version: str = ""
    status: str = ""
    uri: str = ""
    exploit_available: str = "unknown"  # YES, NO, unknown
    fix_available: str = "unknown"  # YES, NO, PARTIAL, unknown
    score: float = 0.0
    type: str = ""


class VulnerabilityResult(BaseModel):
    """Outcome of scanning one image.

    Attributes:
        image_uri: Echo of the requested image URI
        repository: Repository part of the URI, when the source resolved it
        tag: Tag part of the URI, when the source resolved it
        severity_counts: Severity label -> count (label set is backend-defined)
        findings: Individual findings in the order the backend returned them
        scan_status: Backend status string (opaque to the engine)
        last_scan_time: ISO-8601 timestamp of the last backend scan
    """

    model_config = ConfigDict(frozen=True)

    image_uri: str
    repository: str = ""
    tag: str = ""
    severity_counts: Mapping[str, int] = Field(default_factory=lambda: MappingProxyType({}))
    findings: Tuple[VulnerabilityFinding, ...] = ()
    scan_status: str = ""
    last_scan_time: Optional[str] = None

    @field_validator("severity_counts")
    @classmethod
    def _freeze_counts(cls, value: Mapping[str, int]) -> Mapping[str, int]:
        for severity, count in value.items():
            if count < 0:
                raise ValueError(f"Negative count for severity {severity}: {count}")
        return MappingProxyType(dict(value))

    @field_serializer("severity_counts")
    def _serialize_counts(self, value: Mapping[str, int]) -> Dict[str, int]:
        return dict(value)

    @property
    def total_count(self) -> int:
        """Total number of vulnerabilities across all severities."""
        return sum(self.severity_counts.values())


class ImageVulnerabilityData(BaseModel):
    """One snapshot entry: a scan result plus the placement it was found at."""

    model_config = ConfigDict(frozen=True)

    result: VulnerabilityResult
    placement: Placement = Field(default_factory=Placement)

    @property
    def image_uri(self) -> str:
        return self.result.image_uri
