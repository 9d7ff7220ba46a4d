"""
Kaneboard - ticket lifecycle, time tracking and project health engine.
"""

__version__ = "0.1.0"
