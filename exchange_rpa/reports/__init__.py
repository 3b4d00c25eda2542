"""Report catalog, download handling and the report run flow."""

__all__ = ["main"]


def __getattr__(name: str):
    if name == "main":
        from .main import main as report_main

        return report_main
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
