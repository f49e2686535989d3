"""
Harvy buyer service: builds, signs and broadcasts tax-loss swap transactions.
"""

__version__ = "0.3.0"
