"""KIO Gateway: one query surface over the SAOS API and the UZP judgment portal."""

__version__ = "0.1.0"
