"""Administrative helpers for Microsoft Entra ID group conversion and PIM role activation."""

__version__ = "0.1.0"
