"""
Core package for shared utilities.

Configuration, structured logging and identity-token verification shared by
the API, service and real-time layers.
"""
