"""linechat - line-oriented TCP text-protocol server."""

__version__ = "0.1.0"
