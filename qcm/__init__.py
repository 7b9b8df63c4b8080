"""
QCM Attempt Engine.

Randomized multiple-choice quiz delivery with autosave, server-side time
limits, attempt limits and exact-set scoring.
"""

__version__ = "1.0.0"
