"""tx-solver: transaction construction and script solving for Bitcoin UTXOs."""

__version__ = "0.1.0"
