"""HTTP API for Issueflow Core."""
