"""Caregiver onboarding from the work board into the staff entry form."""

__all__ = ["main"]


def __getattr__(name: str):
    if name == "main":
        from .main import main as caregivers_main

        return caregivers_main
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
