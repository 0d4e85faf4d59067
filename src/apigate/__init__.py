"""Developer API auth, OAuth 2.0, rate limiting and webhook delivery for multi-tenant platforms."""

__version__ = "0.1.0"
