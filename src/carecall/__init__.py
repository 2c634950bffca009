"""
CareCall: scheduled wellness-check phone calls driven by a spoken Q&A loop.
"""

__version__ = "0.1.0"
