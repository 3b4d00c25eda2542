"""Portal automation for HHAeXchange report downloads and caregiver entry."""

__all__ = ["__version__"]

__version__ = "0.1.0"
