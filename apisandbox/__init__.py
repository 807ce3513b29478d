"""apisandbox - HTTP request composer and executor."""

__version__ = "0.1.0"
