"""Pydantic schemas for vulnerability data and API responses."""

from vulnrelay.schemas.vulnerability import (
    Placement,
    ImageRef,
    VulnerabilityFinding,
    VulnerabilityResult,
    ImageVulnerabilityData,
)
from vulnrelay.schemas.report import (
    ImageVulnerabilitySchema,
    CVESummary,
    VulnerabilitySummary,
    VulnerabilitiesResponse,
)

__all__ = [
    "Placement",
    "ImageRef",
    "VulnerabilityFinding",
    "VulnerabilityResult",
    "ImageVulnerabilityData",
    "ImageVulnerabilitySchema",
    "CVESummary",
    "VulnerabilitySummary",
    "VulnerabilitiesResponse",
]
