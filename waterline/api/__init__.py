"""HTTP and WebSocket surface of the Waterline service."""
