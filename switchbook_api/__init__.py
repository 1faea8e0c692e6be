"""
Switchbook API - mechanical keyboard switch catalogue service.
"""

__version__ = "0.1.0"
