"""
Parley

Real-time meeting relay: fans audio-derived transcripts and LLM analysis
out to every client joined to a meeting session.
"""

__version__ = "0.1.0"
