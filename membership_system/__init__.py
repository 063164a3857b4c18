"""
Membership management backend for a library association.

Registers institutional members, takes membership payments through the
Midtrans hosted checkout, reconciles Midtrans payment notifications into
membership status, and issues receipts and certificates.
"""

__version__ = "0.1.0"
