"""Agent file citations and secure download links."""

__version__ = "0.1.0"
