"""
SecureBank Identity & Ledger Access

A small banking backend: users sign up and sign in with stateless bearer
tokens, then read the balances of their own accounts and the most recent
transactions posted to them.
"""

__version__ = "1.0.0"
