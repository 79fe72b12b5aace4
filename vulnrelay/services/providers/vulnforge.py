"""VulnForge API client used as a vulnerability source."""

import base64
import logging
from datetime import UTC, datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx

from vulnrelay.exceptions import FetchError, ImageURIError
from vulnrelay.schemas.vulnerability import VulnerabilityFinding, VulnerabilityResult
from vulnrelay.services.providers.base import VulnerabilitySource
from vulnrelay.services.providers.image_uri import split_registry
from vulnrelay.utils.retry import async_retry
from vulnrelay.utils.security import mask_sensitive, sanitize_log_message

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

# VulnForge scan status -> exported scan status
SCAN_STATUS_MAP = {
    "completed": "COMPLETE",
    "complete": "COMPLETE",
    "failed": "FAILED",
    "scanning": "IN_PROGRESS",
    "queued": "PENDING",
}


class VulnForgeVulnerabilitySource(VulnerabilitySource):
    """Vulnerability source backed by a VulnForge instance.

    VulnForge tracks vulnerabilities per container. The container whose
    image matches the requested URI (registry aliases normalized) supplies
    the severity summary and the findings of its latest scan.
    """

    name = "vulnforge"

    def __init__(
        self,
        base_url: str,
        auth_type: str = "none",
        api_key: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the VulnForge source.

        Args:
            base_url: VulnForge API base URL (e.g., http://vulnforge:8787)
            auth_type: Authentication type (none, api_key, basic_auth)
            api_key: API key for Bearer token authentication
            username: Username for basic authentication
            password: Password for basic authentication
            timeout: Request timeout in seconds
            client: Preconfigured httpx client (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.auth_type = auth_type
        headers = {}

        if auth_type == "api_key" and api_key:
            headers["Authorization"] = f"Bearer {api_key}"
            logger.debug(f"VulnForge API key authentication ({mask_sensitive(api_key)})")
        elif auth_type == "basic_auth" and username and password:
            credentials = f"{username}:{password}"
            encoded = base64.b64encode(credentials.encode()).decode()
            headers["Authorization"] = f"Basic {encoded}"

        self.client = client or httpx.AsyncClient(timeout=timeout, headers=headers)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()

    @staticmethod
    def _normalize_registry(registry: Optional[str]) -> str:
        """Normalize registry identifiers to a canonical form."""
        if not registry:
            return "dockerhub"
        registry = registry.lower()
        alias_map = {
            "docker.io": "dockerhub",
            "index.docker.io": "dockerhub",
            "registry-1.docker.io": "dockerhub",
            "ghcr.io": "ghcr",
            "lscr.io": "lscr",
            "quay.io": "quay",
            "registry.k8s.io": "k8s",
            "gcr.io": "gcr",
        }
        return alias_map.get(registry, registry)

    @classmethod
    def _parse_image_repo(cls, repo: str) -> Tuple[str, str, bool]:
        """Split an image repository into (registry, name, registry_explicit)."""
        if not repo:
            return "dockerhub", "", False

        registry, name = split_registry(repo)
        registry_explicit = bool(registry)
        registry = cls._normalize_registry(registry)
        name = name.lower()

        if registry == "dockerhub" and name.startswith("library/"):
            name = name.split("/", 1)[1]

        return registry, name, registry_explicit

    @classmethod
    def _container_matches(
        cls,
        container: Dict[str, Any],
        target_registry: str,
        target_name: str,
        target_tag: str,
        target_registry_explicit: bool,
    ) -> bool:
        """Determine if a VulnForge container runs the target image."""
        candidates: List[str] = []

        image = container.get("image")
        image_tag = container.get("image_tag")
        if image and image_tag:
            candidates.append(f"{image}:{image_tag}")
        if image:
            candidates.append(image)
        image_id = container.get("image_id")
        if image_id and not image_id.startswith("sha256:"):
            candidates.append(image_id)

        for candidate in candidates:
            _, remainder = split_registry(candidate)
            if ":" in remainder:
                repo_part, _, candidate_tag = candidate.rpartition(":")
            else:
                repo_part = candidate
                candidate_tag = image_tag or "latest"

            if candidate_tag != target_tag:
                continue

            candidate_registry, candidate_name, candidate_registry_explicit = (
                cls._parse_image_repo(repo_part)
            )

            # An implicit registry matches anything; two explicit ones must agree
            if candidate_registry != target_registry:
                if candidate_registry_explicit and target_registry_explicit:
                    continue

            if candidate_name != target_name:
                continue

            return True

        return False

    @async_retry(max_attempts=3, exceptions=(httpx.ConnectError, httpx.TimeoutException))
    async def _list_containers(self) -> List[Dict[str, Any]]:
        response = await self.client.get(f"{self.base_url}/api/v1/containers/")
        response.raise_for_status()
        data = response.json()
        if isinstance(data, list):
            return data
        return data.get("containers", [])

    async def get_vulnerabilities(self, image_uri: str) -> VulnerabilityResult:
        try:
            repository, tag = self.parse_image_uri(image_uri)
        except ImageURIError as e:
            raise FetchError(image_uri, str(e)) from e

        registry, _ = split_registry(image_uri)
        target_repo = f"{registry}/{repository}" if registry else repository
        target_registry, target_name, target_registry_explicit = self._parse_image_repo(
            target_repo
        )

        logger.debug(f"Querying VulnForge containers for {sanitize_log_message(image_uri)}")

        try:
            containers = await self._list_containers()
        except httpx.HTTPStatusError as e:
            raise FetchError(
                image_uri,
                f"VulnForge API error: {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except (httpx.ConnectError, httpx.TimeoutException) as e:
            raise FetchError(image_uri, f"VulnForge connection error: {e}") from e
        except (ValueError, AttributeError) as e:
            raise FetchError(image_uri, f"Invalid VulnForge response data: {e}") from e

        matching = next(
            (
                container
                for container in containers
                if isinstance(container, dict)
                and self._container_matches(
                    container, target_registry, target_name, tag, target_registry_explicit
                )
            ),
            None,
        )
        if matching is None:
            logger.warning(f"No vulnerability data found for {sanitize_log_message(image_uri)}")
            raise FetchError(image_uri, "no vulnerability data found", status_code=404)

        try:
            return self._build_result(image_uri, repository, tag, matching)
        except (ValueError, TypeError, AttributeError) as e:
            raise FetchError(image_uri, f"Invalid VulnForge response data: {e}") from e

    @staticmethod
    def _format_time(value: Any) -> Optional[str]:
        if not value:
            return None
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(UTC)
        return parsed.strftime("%Y-%m-%dT%H:%M:%SZ")

    def _build_result(
        self, image_uri: str, repository: str, tag: str, container: Dict[str, Any]
    ) -> VulnerabilityResult:
        # Both nested objects are null for containers that were never scanned
        vuln_summary = container.get("vulnerability_summary") or {}
        last_scan = container.get("last_scan") or {}

        # Older VulnForge versions only have the top-level counters
        if not vuln_summary:
            vuln_summary = {
                "critical": container.get("critical_count", 0),
                "high": container.get("high_count", 0),
                "medium": container.get("medium_count", 0),
                "low": container.get("low_count", 0),
            }

        severity_counts = {
            severity.upper(): int(vuln_summary.get(severity) or 0)
            for severity in ("critical", "high", "medium", "low")
        }

        findings = tuple(
            self._build_finding(vuln)
            for vuln in last_scan.get("vulnerabilities") or []
            if isinstance(vuln, dict) and vuln.get("cve_id")
        )

        raw_status = last_scan.get("status") or container.get("last_scan_status") or ""
        scan_status = SCAN_STATUS_MAP.get(raw_status.lower(), raw_status.upper())

        return VulnerabilityResult(
            image_uri=image_uri,
            repository=repository,
            tag=tag,
            severity_counts=severity_counts,
            findings=findings,
            scan_status=scan_status,
            last_scan_time=self._format_time(
                last_scan.get("finished_at")
                or last_scan.get("started_at")
                or container.get("last_scan_date")
            ),
        )

    @staticmethod
    def _build_finding(vuln: Dict[str, Any]) -> VulnerabilityFinding:
        fixed_version = vuln.get("fixed_version") or ""
        is_fixable = vuln.get("is_fixable")
        if is_fixable is None:
            fix_available = "YES" if fixed_version else "unknown"
        else:
            fix_available = "YES" if is_fixable else "NO"

        cve_id = vuln["cve_id"]
        return VulnerabilityFinding(
            name=cve_id,
            description=vuln.get("title") or "",
            severity=(vuln.get("severity") or "UNKNOWN").upper(),
            package_name=vuln.get("package_name") or "",
            package_version=vuln.get("installed_version") or "",
            fix_version=fixed_version,
            status="ACTIVE",
            uri=f"https://nvd.nist.gov/vuln/detail/{cve_id}",
            fix_available=fix_available,
            score=float(vuln.get("cvss_score") or 0.0),
            type="PACKAGE_VULNERABILITY",
        )
