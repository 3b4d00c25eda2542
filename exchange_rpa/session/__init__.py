"""Browser session lifecycle and portal authentication."""
