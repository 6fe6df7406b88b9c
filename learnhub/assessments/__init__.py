"""
Assessment subsystem: templates, timed sessions, scoring and authoring.
"""
