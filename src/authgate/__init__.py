# authgate: OAuth 2.0 authorization server core.
# Created: 2026-10-18

__version__ = "0.1.0"
