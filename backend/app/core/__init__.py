"""Core utilities for the Guide Light backend."""
