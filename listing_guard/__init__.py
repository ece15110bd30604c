"""listing_guard — AI moderation pipeline for marketplace listing publishes."""

__version__ = "0.1.0"
