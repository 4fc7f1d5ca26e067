"""
Settlement Kernel

The contract, payment and dispute settlement engine of a freelance
marketplace:
- Escrow custody with a two-step admin verification
- Contract execution with pairing and mutual completion
- Multi-worker budget allocation
- Admin dispute resolution with commission-safe refunds
- Outbox delivery of notifications and provider refunds
"""

__version__ = "0.1.0"
