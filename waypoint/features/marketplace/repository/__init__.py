"""
Persistence for applications, seller profiles, products and transactions.
"""
