# Security helpers: session tokens and audit trail.
