"""codeconnect - pair two parties with a short code and relay events between them."""

__version__ = "0.1.0"
