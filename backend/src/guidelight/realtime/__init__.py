"""Realtime helpers: broker transport, typing indicators and message feeds."""
