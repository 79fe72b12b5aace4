"""Mock providers for local testing and demos.

MockImageSource simulates a small Kubernetes cluster and
MockVulnerabilitySource returns canned findings chosen by repository name,
so the whole service runs without cluster or scanner access.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Dict, List, Tuple

from vulnrelay.exceptions import FetchError, ImageURIError
from vulnrelay.schemas.vulnerability import (
    ImageRef,
    Placement,
    VulnerabilityFinding,
    VulnerabilityResult,
)
from vulnrelay.services.providers.base import ImageSource, VulnerabilitySource

logger = logging.getLogger(__name__)

MOCK_REGISTRY = "123456789012.dkr.ecr.us-east-1.amazonaws.com"

# (repository:tag, namespace, workload kind)
MOCK_WORKLOADS: List[Tuple[str, str, str]] = [
    ("web-frontend:v1.2.3", "production", "Deployment"),
    ("api-backend:v2.1.0", "production", "Deployment"),
    ("postgres-db:14.9", "production", "StatefulSet"),
    ("worker-service:latest", "production", "Deployment"),
    ("nginx-proxy:1.21.6", "ingress-system", "Deployment"),
    ("monitoring-agent:v3.4.1", "monitoring", "Deployment"),
    ("python-api:dev-abc123", "staging", "Deployment"),
    ("node-frontend:staging", "staging", "Deployment"),
    ("redis-cache:7.0.11", "production", "StatefulSet"),
    ("legacy-app:v1.0.0", "legacy", "Deployment"),
]


class MockImageSource(ImageSource):
    """Image source returning a fixed set of simulated cluster workloads."""

    name = "mock-cluster"

    async def discover_images(self) -> List[ImageRef]:
        logger.info("Discovering mock images from simulated cluster")

        images = [
            ImageRef(
                uri=f"{MOCK_REGISTRY}/{reference}",
                placement=Placement(
                    namespace=namespace,
                    workload=reference.split(":", 1)[0],
                    workload_type=kind,
                ),
            )
            for reference, namespace, kind in MOCK_WORKLOADS
        ]

        logger.info(f"Mock image discovery completed: {len(images)} images")
        return images

    def is_registry_image(self, image_uri: str) -> bool:
        return ".dkr.ecr." in image_uri and ".amazonaws.com/" in image_uri


def _finding(
    name: str,
    description: str,
    severity: str,
    package_name: str,
    package_version: str,
    fix_version: str,
    score: float,
    exploit_available: str = "NO",
) -> VulnerabilityFinding:
    return VulnerabilityFinding(
        name=name,
        description=description,
        severity=severity,
        package_name=package_name,
        package_version=package_version,
        fix_version=fix_version,
        status="ACTIVE",
        uri=f"https://cve.mitre.org/cgi-bin/cvename.cgi?name={name}",
        exploit_available=exploit_available,
        fix_available="YES",
        score=score,
        type="PACKAGE_VULNERABILITY",
    )


WEB_SERVER_FINDINGS = (
    _finding("CVE-2024-7592", "Critical buffer overflow vulnerability in nginx HTTP/2 module",
             "CRITICAL", "nginx", "1.20.1", "1.20.2", 9.8, exploit_available="YES"),
    _finding("CVE-2024-6387", "OpenSSH remote code execution vulnerability",
             "HIGH", "openssh-server", "8.9p1", "8.9p1-3ubuntu0.7", 8.1),
    _finding("CVE-2024-2961", "Buffer overflow in GNU libc",
             "MEDIUM", "libc6", "2.35-0ubuntu3.1", "2.35-0ubuntu3.8", 5.5),
)

DATABASE_FINDINGS = (
    _finding("CVE-2024-21096", "MySQL Server privilege escalation vulnerability",
             "HIGH", "mysql-server", "8.0.32", "8.0.37", 7.2),
    _finding("CVE-2024-3094", "Backdoor in xz utils affecting database compression",
             "CRITICAL", "xz-utils", "5.4.1", "5.4.5", 10.0, exploit_available="YES"),
    _finding("CVE-2024-1234", "Minor configuration issue in database logging",
             "LOW", "postgres", "14.9", "14.11", 2.1),
    _finding("CVE-2024-5678", "Database connection pooling memory leak",
             "LOW", "libpq", "14.9", "14.11", 3.1),
)

PYTHON_API_FINDINGS = (
    _finding("CVE-2024-6232", "Python urllib3 MITM vulnerability via IPv6-mapped IPv4 addresses",
             "MEDIUM", "urllib3", "1.26.15", "1.26.19", 4.8),
    _finding("CVE-2024-35195", "Requests library unintended credential disclosure",
             "HIGH", "requests", "2.28.1", "2.32.0", 7.5),
    _finding("CVE-2024-9999", "Python setuptools vulnerability",
             "LOW", "setuptools", "65.5.0", "65.5.1", 2.3),
    _finding("CVE-2024-8888", "Flask minor security issue",
             "LOW", "flask", "2.2.2", "2.3.3", 3.1),
    _finding("CVE-2024-7777", "Minor issue in pip package manager",
             "LOW", "pip", "22.3.1", "23.0.1", 1.9),
)

NODE_APP_FINDINGS = (
    _finding("CVE-2024-21490", "Angular cross-site scripting vulnerability in SSR applications",
             "HIGH", "@angular/core", "15.2.8", "15.2.10", 6.9),
    _finding("CVE-2024-21491", "Express.js prototype pollution vulnerability",
             "MEDIUM", "express", "4.18.2", "4.19.2", 5.3),
    _finding("CVE-2024-1111", "Node.js path traversal vulnerability",
             "LOW", "node", "18.17.0", "18.19.1", 2.8),
    _finding("CVE-2024-2222", "npm package vulnerability",
             "LOW", "npm", "9.6.7", "9.8.1", 3.2),
    _finding("CVE-2024-3333", "Webpack bundler issue",
             "LOW", "webpack", "5.88.2", "5.89.0", 2.1),
    _finding("CVE-2024-4444", "React development server vulnerability",
             "LOW", "react-scripts", "5.0.1", "5.0.2", 1.7),
)

GENERIC_APP_FINDINGS = (
    _finding("CVE-2024-0727", "OpenSSL denial of service vulnerability",
             "MEDIUM", "openssl", "3.0.8", "3.0.13", 5.5),
    _finding("CVE-2024-2398", "curl library heap buffer overflow",
             "LOW", "curl", "7.81.0", "8.7.1", 3.4),
)

# Repository substrings -> findings profile, first match wins
PROFILES: List[Tuple[Tuple[str, ...], Tuple[VulnerabilityFinding, ...]]] = [
    (("nginx", "web"), WEB_SERVER_FINDINGS),
    (("postgres", "mysql", "database"), DATABASE_FINDINGS),
    (("python", "api"), PYTHON_API_FINDINGS),
    (("node", "frontend"), NODE_APP_FINDINGS),
]

BASE_SEVERITIES = ("CRITICAL", "HIGH", "MEDIUM", "LOW")


def count_by_severity(findings: Tuple[VulnerabilityFinding, ...]) -> Dict[str, int]:
    """Count findings per severity, always including the four base levels."""
    counts = {severity: 0 for severity in BASE_SEVERITIES}
    for finding in findings:
        counts[finding.severity] = counts.get(finding.severity, 0) + 1
    return counts


class MockVulnerabilitySource(VulnerabilitySource):
    """Vulnerability source returning realistic canned data without a backend."""

    name = "mock-scanner"

    async def get_vulnerabilities(self, image_uri: str) -> VulnerabilityResult:
        logger.debug(f"Getting mock vulnerability data for {image_uri}")

        try:
            repository, tag = self.parse_image_uri(image_uri)
        except ImageURIError as e:
            raise FetchError(image_uri, str(e)) from e

        findings = GENERIC_APP_FINDINGS
        for keywords, profile in PROFILES:
            if any(keyword in repository for keyword in keywords):
                findings = profile
                break

        # Stable per-repository scan age so repeated calls agree
        scanned_at = datetime.now(UTC).replace(microsecond=0) - timedelta(
            minutes=len(repository) * 5
        )

        return VulnerabilityResult(
            image_uri=image_uri,
            repository=repository,
            tag=tag,
            severity_counts=count_by_severity(findings),
            findings=findings,
            scan_status="COMPLETE",
            last_scan_time=scanned_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
        )
