"""Service layer for the authguard application."""
