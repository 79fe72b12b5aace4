"""VulnRelay - container image vulnerability exporter."""

__version__ = "1.2.0"
