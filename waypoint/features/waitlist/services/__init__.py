"""
Admission queue service. Import the module, not the singleton, so tests can swap it.
"""
