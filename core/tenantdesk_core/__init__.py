"""TenantDesk core: domain vocabulary, error taxonomy, and the state store."""

__version__ = "0.1.0"
