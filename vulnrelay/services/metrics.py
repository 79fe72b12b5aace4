"""Prometheus metrics for VulnRelay.

Two kinds of metrics live here:
- operational counters for the collection engine, registered on the
  default registry like any other process metric
- SnapshotCollector, which renders the engine's current snapshot into
  vulnerability gauges at scrape time
"""

import logging
from collections.abc import Callable, Iterator
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Tuple

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)
from prometheus_client.core import GaugeMetricFamily, Metric
from prometheus_client.registry import Collector

from vulnrelay.exceptions import ImageURIError
from vulnrelay.schemas.vulnerability import ImageVulnerabilityData
from vulnrelay.services.providers.image_uri import parse_image_uri

logger = logging.getLogger(__name__)

# Collection engine metrics
collection_cycles_total = Counter(
    "vulnrelay_collection_cycles_total",
    "Collection cycles run, by outcome",
    ["outcome"],
)
collection_cycle_duration = Histogram(
    "vulnrelay_collection_cycle_duration_seconds",
    "Collection cycle duration",
    buckets=[1, 5, 10, 30, 60, 120, 300, 600],
)
fetch_errors_total = Counter(
    "vulnrelay_fetch_errors_total",
    "Per-image vulnerability fetches that failed",
)
cache_requests_total = Counter(
    "vulnrelay_cache_requests_total",
    "Result cache lookups, by result",
    ["result"],
)

MAX_LABEL_LENGTH = 200

IMAGE_LABELS = ["image_uri", "repository", "tag"]
PLACEMENT_LABELS = ["namespace", "workload", "workload_type"]

FIX_AVAILABILITY_VALUES = {"YES": 1.0, "PARTIAL": 0.5, "NO": 0.0}


class SnapshotReader(Protocol):
    """Anything exposing the snapshot reader interface."""

    def get_snapshot(
        self,
    ) -> Tuple[Dict[str, ImageVulnerabilityData], Optional[datetime]]: ...


def sanitize_label_value(value: str) -> str:
    """Clean a string for use as a Prometheus label value.

    Newlines, carriage returns and tabs become spaces, values longer than
    200 characters are truncated with "...", and empty values become
    "unknown".

    Examples:
        >>> sanitize_label_value("line one\\nline two")
        'line one line two'
        >>> sanitize_label_value("")
        'unknown'
    """
    if not value:
        return "unknown"

    value = value.replace("\n", " ").replace("\r", " ").replace("\t", " ")

    if len(value) > MAX_LABEL_LENGTH:
        value = value[:MAX_LABEL_LENGTH] + "..."

    return value.strip()


def parse_scan_timestamp(value: Optional[str]) -> Optional[float]:
    """Convert an ISO-8601 scan time to a Unix timestamp, None if unparseable."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return None


class SnapshotCollector(Collector):
    """Renders the current vulnerability snapshot as Prometheus gauges.

    Metrics are rebuilt from scratch on every scrape, so images that left
    the snapshot disappear from the exposition immediately.
    """

    def __init__(
        self,
        reader: SnapshotReader,
        parse_uri: Callable[[str], Tuple[str, str]] = parse_image_uri,
    ) -> None:
        """Initialize the collector.

        Args:
            reader: Engine (or any snapshot reader) to pull data from
            parse_uri: Splits an image URI into (repository, tag)
        """
        self._reader = reader
        self._parse_uri = parse_uri

    def collect(self) -> Iterator[Metric]:
        data, collected_at = self._reader.get_snapshot()

        vulnerability_count = GaugeMetricFamily(
            "vulnrelay_image_vulnerability_count",
            "Number of vulnerabilities found in images by severity",
            labels=IMAGE_LABELS + ["severity"] + PLACEMENT_LABELS,
        )
        last_scan_time = GaugeMetricFamily(
            "vulnrelay_image_last_scan_timestamp",
            "Timestamp of the last vulnerability scan for images",
            labels=IMAGE_LABELS + PLACEMENT_LABELS,
        )
        scan_status = GaugeMetricFamily(
            "vulnrelay_image_scan_status",
            "Status of vulnerability scan for images (1=COMPLETE, 0=other)",
            labels=IMAGE_LABELS + ["status"] + PLACEMENT_LABELS,
        )
        vulnerability_info = GaugeMetricFamily(
            "vulnrelay_vulnerability_info",
            "Detailed vulnerability information with CVE details",
            labels=IMAGE_LABELS
            + ["cve_name", "severity", "description", "status", "type"]
            + PLACEMENT_LABELS,
        )
        package_vulnerability = GaugeMetricFamily(
            "vulnrelay_package_vulnerability",
            "Package-level vulnerability information with fix details",
            labels=IMAGE_LABELS
            + ["cve_name", "severity", "package_name", "package_version", "fix_version"]
            + PLACEMENT_LABELS,
        )
        fix_availability = GaugeMetricFamily(
            "vulnrelay_vulnerability_fix_available",
            "Fix availability for vulnerabilities (1=YES, 0.5=PARTIAL, 0=NO)",
            labels=IMAGE_LABELS + ["cve_name", "severity", "fix_status"] + PLACEMENT_LABELS,
        )
        exploit_availability = GaugeMetricFamily(
            "vulnrelay_vulnerability_exploit_available",
            "Exploit availability for vulnerabilities (1=YES, 0=NO)",
            labels=IMAGE_LABELS
            + ["cve_name", "severity", "exploit_status"]
            + PLACEMENT_LABELS,
        )
        collection_info = GaugeMetricFamily(
            "vulnrelay_vulnerability_collection_info",
            "Information about vulnerability data collection",
            labels=["info_type"],
        )

        per_image_families = [
            vulnerability_count,
            last_scan_time,
            scan_status,
            vulnerability_info,
            package_vulnerability,
            fix_availability,
            exploit_availability,
        ]
        # Samples keyed by label values; identical label sets collapse into
        # one series with the last value winning
        series: Dict[str, Dict[Tuple[str, ...], float]] = {
            family.name: {} for family in per_image_families
        }

        def set_sample(family: GaugeMetricFamily, labels: List[str], value: float) -> None:
            series[family.name][tuple(labels)] = value

        for image_uri, entry in data.items():
            vuln = entry.result
            placement = [
                entry.placement.namespace,
                entry.placement.workload,
                entry.placement.workload_type,
            ]

            try:
                repository, tag = self._parse_uri(image_uri)
            except ImageURIError as e:
                logger.error(f"Failed to parse image URI for metrics: {e}")
                continue
            image = [image_uri, repository, tag]

            for severity, count in vuln.severity_counts.items():
                set_sample(vulnerability_count, image + [severity] + placement, float(count))

            scanned_at = parse_scan_timestamp(vuln.last_scan_time)
            if scanned_at is not None:
                set_sample(last_scan_time, image + placement, scanned_at)

            set_sample(
                scan_status,
                image + [vuln.scan_status] + placement,
                1.0 if vuln.scan_status == "COMPLETE" else 0.0,
            )

            for finding in vuln.findings:
                cve = sanitize_label_value(finding.name)

                set_sample(
                    vulnerability_info,
                    image
                    + [
                        cve,
                        finding.severity,
                        sanitize_label_value(finding.description),
                        sanitize_label_value(finding.status),
                        sanitize_label_value(finding.type),
                    ]
                    + placement,
                    1.0,
                )

                # Provider score when available, 1 for basic scanning
                set_sample(
                    package_vulnerability,
                    image
                    + [
                        cve,
                        finding.severity,
                        sanitize_label_value(finding.package_name),
                        sanitize_label_value(finding.package_version),
                        sanitize_label_value(finding.fix_version),
                    ]
                    + placement,
                    finding.score or 1.0,
                )

                set_sample(
                    fix_availability,
                    image + [cve, finding.severity, finding.fix_available] + placement,
                    FIX_AVAILABILITY_VALUES.get(finding.fix_available, 0.0),
                )

                set_sample(
                    exploit_availability,
                    image + [cve, finding.severity, finding.exploit_available] + placement,
                    1.0 if finding.exploit_available == "YES" else 0.0,
                )

        collection_info.add_metric(
            ["last_collection_timestamp"],
            collected_at.timestamp() if collected_at is not None else 0.0,
        )
        collection_info.add_metric(["images_monitored"], float(len(data)))

        for family in per_image_families:
            for labels, value in series[family.name].items():
                family.add_metric(list(labels), value)
            yield family
        yield collection_info


def create_snapshot_registry(
    reader: SnapshotReader,
    parse_uri: Callable[[str], Tuple[str, str]] = parse_image_uri,
) -> CollectorRegistry:
    """Build a registry holding only the snapshot collector for one engine."""
    registry = CollectorRegistry(auto_describe=False)
    registry.register(SnapshotCollector(reader, parse_uri))
    return registry


def get_metrics(*registries: CollectorRegistry) -> bytes:
    """Get Prometheus metrics in text format.

    Args:
        registries: Registries to render, concatenated in order

    Returns:
        Metrics in Prometheus text format
    """
    return b"".join(generate_latest(registry) for registry in registries)


def get_content_type() -> str:
    """Get Prometheus metrics content type.

    Returns:
        Content type string
    """
    return CONTENT_TYPE_LATEST
