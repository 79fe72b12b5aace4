"""Image and vulnerability source implementations."""
