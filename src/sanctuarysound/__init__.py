"""
SanctuarySound: mixing assistant for volunteer worship sound teams.

Recommendation and delta analysis for console settings, real-time SPL
monitoring and RT60 room measurement.
"""

__version__ = "0.1.0"
