"""
Persistence for waitlist entries and position sequencing.
"""
