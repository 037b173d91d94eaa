"""Guide Light realtime synchronization core."""
