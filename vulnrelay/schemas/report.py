"""Schemas for the /vulnerabilities JSON endpoint."""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from vulnrelay.schemas.vulnerability import VulnerabilityFinding


class ImageVulnerabilitySchema(BaseModel):
    """Vulnerability data for one image, flattened with its placement."""

    model_config = ConfigDict(from_attributes=True)

    image_uri: str
    repository: str
    tag: str
    vulnerability_counts: Dict[str, int]
    total_count: int
    scan_status: str
    last_scan_time: Optional[str] = None
    findings: List[VulnerabilityFinding]
    namespace: str
    workload: str
    workload_type: str


class CVESummary(BaseModel):
    """How many images a single CVE shows up in."""

    name: str
    severity: str
    image_count: int
    description: str


class VulnerabilitySummary(BaseModel):
    """Aggregate statistics across every image in the snapshot."""

    total_images: int
    total_vulnerabilities: int
    severity_breakdown: Dict[str, int]  # {"CRITICAL": X, "HIGH": Y, ...}
    top_cves: List[CVESummary]


class VulnerabilitiesResponse(BaseModel):
    """Response body of GET /vulnerabilities."""

    images: List[ImageVulnerabilitySchema]
    summary: VulnerabilitySummary
    last_updated: Optional[str] = None
