"""Phone verification and MFA service."""

__version__ = "1.0.0"
