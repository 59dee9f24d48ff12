"""pulseledger - autonomous control loops with a verifiable action ledger"""

__version__ = "0.1.0"
