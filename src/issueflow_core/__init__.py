"""Issueflow Core: issue lifecycle, audit trail, mentions and live collaboration events."""

__version__ = "1.0.0"
