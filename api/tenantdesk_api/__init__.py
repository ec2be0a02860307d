"""TenantDesk HTTP service: tenant authorization, invitations, and note quotas."""

__version__ = "0.1.0"
