"""
Administrative authoring of questions and assessment templates.
"""
