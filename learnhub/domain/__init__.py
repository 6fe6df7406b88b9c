"""
Domain models shared by the LearnHub assessment subsystem.
"""
