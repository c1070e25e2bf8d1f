"""
Charmsmith - photo to jewelry charm rendering service.
"""

__version__ = "1.0.0"
