"""Transaction pipeline engine for the real estate CRM."""

__version__ = "1.0.0"
