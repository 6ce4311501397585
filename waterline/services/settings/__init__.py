"""Business settings and the public contact card."""
