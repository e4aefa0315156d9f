"""
Waitlist (admission queue) feature.
"""
