"""payctl: operator control plane for the Setto payment program on Solana."""

__version__ = "0.1.0"
