"""layerprov — idempotent, privilege-scoped environment provisioning."""

__version__ = "0.1.0"
