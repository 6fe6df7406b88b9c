"""
Standalone quick assessment: a fixed-cutoff question run over the default
question page, independent of templates and sessions.
"""
