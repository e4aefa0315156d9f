"""
Marketplace services. Import modules rather than singletons so tests can swap them.
"""
