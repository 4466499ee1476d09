"""Secure form-submission processor with API and SMTP delivery."""

__version__ = "0.1.0"
