"""Centralized brand configuration for user-facing copy."""

BRAND_NAME = "Scan2Ship"
BRAND_APP_DESCRIPTION = "Multi-tenant order management with prepaid credits"
