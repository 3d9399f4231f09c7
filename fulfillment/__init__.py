"""Order fulfillment, magic link sign-in and polls for a Ghost publication."""

__version__ = "0.1.0"
