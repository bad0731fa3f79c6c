"""
snapname - descriptive, AI-generated names for screenshots and images.
"""

__version__ = "1.0.0"
