"""
HTTP layer for the waitlist feature.
"""
