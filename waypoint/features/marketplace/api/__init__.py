"""
HTTP layer for the marketplace feature.
"""
