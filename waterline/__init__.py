"""
Waterline water-delivery order service.

Role-based order management for a water-delivery business: customers place
orders, the owner confirms and assigns them, drivers deliver them, and every
screen observes the same order records through live-query subscriptions.
"""

__version__ = "1.0.0"
