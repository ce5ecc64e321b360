"""
Sticker Pack service: batch sticker generation API and queue worker.
"""

__version__ = "1.0.0"
