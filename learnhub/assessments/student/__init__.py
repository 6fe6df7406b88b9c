"""
Student-facing assessment routes.
"""
