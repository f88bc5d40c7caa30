"""REST API for TrustBond."""
