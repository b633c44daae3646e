"""
multisend — batch token transfers from many source keys.

Loads a list of source keypairs and a list of transfer targets, pairs them
round-robin, and submits one utility batch per source key through the
Bittensor SDK.
"""

__version__ = "0.1.0"
