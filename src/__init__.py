"""
Hypertable policy job engine.
"""

__version__ = "1.0.0"
