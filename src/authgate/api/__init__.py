# authgate HTTP API layer.
# Created: 2026-10-18
#
# Versioned REST endpoints live under /api/v1/.
