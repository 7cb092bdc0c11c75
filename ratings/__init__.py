"""
Product Ratings Service

Review moderation, rating aggregation and cache coherence.
"""

__version__ = "1.0.0"
