"""
LearnHub backend.

Assessment sessions and scoring for the LearnHub learning platform, served
over FastAPI in front of a PostgREST data API.
"""

__version__ = "0.1.0"
