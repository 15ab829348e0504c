"""Kernel services.  Services flush within the caller's transaction and never commit."""
