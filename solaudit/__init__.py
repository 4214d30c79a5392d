"""Risk classification, safe-mode attack simulation and live monitoring for Solana programs."""

__version__ = "0.1.0"
