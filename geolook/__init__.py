"""Geolook station monitoring backend"""

__version__ = "1.0.0"
