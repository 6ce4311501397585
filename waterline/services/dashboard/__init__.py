"""Derived, read-only rollups over the order collection."""
