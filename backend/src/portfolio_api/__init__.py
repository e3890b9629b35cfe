"""Portfolio backend: projects, visitor analytics, privacy compliance and devpanel."""

__version__ = "1.0.0"
