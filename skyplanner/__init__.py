"""Sky Planner authentication, two-factor and session-security service."""

__version__ = "1.0.0"
