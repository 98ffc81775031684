"""claimflow - claim and settlement-receipt workflows for micro-credit insurance."""

__version__ = "1.0.0"
