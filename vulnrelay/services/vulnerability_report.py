"""Builds the /vulnerabilities report from a snapshot."""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional

from vulnrelay.schemas.report import (
    CVESummary,
    ImageVulnerabilitySchema,
    VulnerabilitiesResponse,
    VulnerabilitySummary,
)
from vulnrelay.schemas.vulnerability import ImageVulnerabilityData

logger = logging.getLogger(__name__)

VALID_SEVERITIES = ("CRITICAL", "HIGH", "MEDIUM", "LOW")
SEVERITY_PRIORITY = {"CRITICAL": 4, "HIGH": 3, "MEDIUM": 2, "LOW": 1}
MAX_LIMIT = 10000
MAX_IMAGE_FILTER_LENGTH = 200
TOP_CVE_COUNT = 10


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Format a collection time as UTC "YYYY-MM-DDTHH:MM:SSZ"."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def build_report(
    data: Mapping[str, ImageVulnerabilityData],
    collected_at: Optional[datetime],
    image_filter: str = "",
    severity_filter: str = "",
    limit: int = 0,
) -> VulnerabilitiesResponse:
    """Assemble the vulnerabilities response.

    Filters apply to the listed images only. An image is listed when it has
    at least one finding left after filtering, or when no filter is set.
    Summary totals cover every image matching the image filter, with
    unfiltered counts; total_images always counts the whole snapshot.

    Args:
        data: Snapshot entries keyed by image URI
        collected_at: When the snapshot was collected
        image_filter: Substring the image URI must contain
        severity_filter: Upper-case severity findings must have
        limit: Maximum findings per image, 0 for no limit
    """
    images: List[ImageVulnerabilitySchema] = []
    severity_breakdown: Dict[str, int] = {}
    total_vulnerabilities = 0
    cves: Dict[str, CVESummary] = {}

    for image_uri in sorted(data):
        entry = data[image_uri]
        if image_filter and image_filter not in image_uri:
            continue

        vuln = entry.result
        findings = list(vuln.findings)
        if severity_filter:
            findings = [f for f in findings if f.severity == severity_filter]
        if limit > 0:
            findings = findings[:limit]

        if findings or (not image_filter and not severity_filter):
            images.append(
                ImageVulnerabilitySchema(
                    image_uri=image_uri,
                    repository=vuln.repository,
                    tag=vuln.tag,
                    vulnerability_counts=dict(vuln.severity_counts),
                    total_count=vuln.total_count,
                    scan_status=vuln.scan_status,
                    last_scan_time=vuln.last_scan_time,
                    findings=findings,
                    namespace=entry.placement.namespace,
                    workload=entry.placement.workload,
                    workload_type=entry.placement.workload_type,
                )
            )

        for severity, count in vuln.severity_counts.items():
            severity_breakdown[severity] = severity_breakdown.get(severity, 0) + count
            total_vulnerabilities += count

        for finding in vuln.findings:
            if not finding.name:
                continue
            existing = cves.get(finding.name)
            if existing is None:
                cves[finding.name] = CVESummary(
                    name=finding.name,
                    severity=finding.severity,
                    image_count=1,
                    description=finding.description,
                )
            else:
                cves[finding.name] = existing.model_copy(
                    update={"image_count": existing.image_count + 1}
                )

    top_cves = sorted(
        cves.values(),
        key=lambda cve: (-cve.image_count, -SEVERITY_PRIORITY.get(cve.severity, 0), cve.name),
    )[:TOP_CVE_COUNT]

    return VulnerabilitiesResponse(
        images=images,
        summary=VulnerabilitySummary(
            total_images=len(data),
            total_vulnerabilities=total_vulnerabilities,
            severity_breakdown=severity_breakdown,
            top_cves=top_cves,
        ),
        last_updated=format_timestamp(collected_at),
    )
