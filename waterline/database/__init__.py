"""
Database package initialization.

The package follows a modular structure:
- base: declarative base and timestamp mixin
- connection: async engine, session factory and health checks
- models: ORM models for orders, role profiles and business settings
"""

__all__ = []
