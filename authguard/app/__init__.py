"""authguard application package."""
