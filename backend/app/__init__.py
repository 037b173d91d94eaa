"""Guide Light backend application package."""
