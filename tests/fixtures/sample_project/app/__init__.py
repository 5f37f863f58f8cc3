"""Order handling demo package."""
