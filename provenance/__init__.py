"""
Deploy Provenance - trust-minimized contract deployment verification.

Compares the init code a transaction actually executed against the init
code compiled from a claimed source revision.
"""

__version__ = "0.1.0"
