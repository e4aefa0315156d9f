"""
Seller marketplace feature: applications, seller profiles, checkout and the ledger.
"""
