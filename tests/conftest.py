"""Pytest configuration and fixtures."""

import asyncio
from datetime import UTC, datetime
from typing import Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from vulnrelay.schemas.vulnerability import (
    ImageRef,
    ImageVulnerabilityData,
    Placement,
    VulnerabilityFinding,
    VulnerabilityResult,
)
from vulnrelay.services.collection_engine import CollectionEngine
from vulnrelay.services.providers.base import ImageSource, VulnerabilitySource
from vulnrelay.services.result_cache import ResultCache


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubImageSource(ImageSource):
    """Image source returning a configurable list, or raising a configured error."""

    name = "stub-images"

    def __init__(self, images: Optional[List[ImageRef]] = None):
        self.images = list(images or [])
        self.error: Optional[Exception] = None
        self.calls = 0

    async def discover_images(self) -> List[ImageRef]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.images)


class StubVulnerabilitySource(VulnerabilitySource):
    """Vulnerability source recording calls and concurrency.

    Results carry the current ``marker`` as scan_status, so tests can tell
    which cycle produced an entry.
    """

    name = "stub-vulns"

    def __init__(self):
        self.marker = "v1"
        self.delay = 0.0
        self.gate: Optional[asyncio.Event] = None
        self.started: Optional[asyncio.Event] = None
        self.failures: Dict[str, Exception] = {}
        self.overrides: Dict[str, VulnerabilityResult] = {}
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def get_vulnerabilities(self, image_uri: str) -> VulnerabilityResult:
        self.calls.append(image_uri)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.started is not None:
                self.started.set()
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            if image_uri in self.failures:
                raise self.failures[image_uri]
            if image_uri in self.overrides:
                return self.overrides[image_uri]
            return VulnerabilityResult(
                image_uri=image_uri,
                severity_counts={"HIGH": 1},
                scan_status=self.marker,
            )
        finally:
            self.in_flight -= 1


def _make_images(count: int, namespace: str = "production") -> List[ImageRef]:
    return [
        ImageRef(
            uri=f"registry.local/app-{i}:v{i}",
            placement=Placement(namespace=namespace, workload=f"app-{i}", workload_type="Deployment"),
        )
        for i in range(count)
    ]


@pytest.fixture
def clock():
    """Fake monotonic clock for cache expiry tests."""
    return FakeClock()


@pytest.fixture
def image_source():
    """Stub image source with three images."""
    return StubImageSource(_make_images(3))


@pytest.fixture
def vuln_source():
    """Stub vulnerability source."""
    return StubVulnerabilitySource()


@pytest.fixture
def make_images():
    """Factory fixture for lists of distinct ImageRef instances."""
    return _make_images


@pytest.fixture
def stub_sources():
    """Constructors for extra stub sources: (image source class, vulnerability source class)."""
    return StubImageSource, StubVulnerabilitySource


@pytest.fixture
def engine(image_source, vuln_source, clock):
    """Collection engine over the stub sources with a fake-clock cache."""
    return CollectionEngine(
        image_source,
        vuln_source,
        poll_interval=0.01,
        fetch_concurrency=3,
        cache=ResultCache(ttl=60.0, clock=clock),
    )


@pytest.fixture
def make_finding():
    """Factory fixture for VulnerabilityFinding instances."""

    def _make_finding(name: str, severity: str = "HIGH", **kwargs) -> VulnerabilityFinding:
        defaults = {
            "description": f"{name} description",
            "package_name": "openssl",
            "package_version": "3.0.1",
            "fix_version": "3.0.2",
            "status": "ACTIVE",
            "fix_available": "YES",
            "exploit_available": "NO",
            "score": 7.5,
            "type": "PACKAGE_VULNERABILITY",
        }
        return VulnerabilityFinding(name=name, severity=severity, **{**defaults, **kwargs})

    return _make_finding


@pytest.fixture
def make_entry():
    """Factory fixture for snapshot entries (ImageVulnerabilityData)."""

    def _make_entry(
        image_uri: str,
        counts: Optional[Dict[str, int]] = None,
        findings=(),
        namespace: str = "production",
        workload: str = "web",
        workload_type: str = "Deployment",
        scan_status: str = "COMPLETE",
        last_scan_time: Optional[str] = "2024-01-15T10:30:00Z",
        repository: str = "",
        tag: str = "",
    ) -> ImageVulnerabilityData:
        return ImageVulnerabilityData(
            result=VulnerabilityResult(
                image_uri=image_uri,
                repository=repository,
                tag=tag,
                severity_counts=counts or {},
                findings=tuple(findings),
                scan_status=scan_status,
                last_scan_time=last_scan_time,
            ),
            placement=Placement(namespace=namespace, workload=workload, workload_type=workload_type),
        )

    return _make_entry


@pytest.fixture
def collected_at():
    """Fixed collection timestamp."""
    return datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def fake_engine():
    """Engine stand-in exposing only the snapshot reader interface."""
    fake = MagicMock(spec=CollectionEngine)
    fake.get_snapshot.return_value = ({}, None)
    return fake


@pytest.fixture
async def app():
    """FastAPI app for testing."""
    from vulnrelay.main import app as application
    return application


@pytest.fixture
async def client(app, fake_engine):
    """Async test client with the engine dependency overridden."""
    from httpx import ASGITransport, AsyncClient

    from vulnrelay.dependencies import get_engine

    app.dependency_overrides[get_engine] = lambda: fake_engine

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
