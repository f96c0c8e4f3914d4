"""Job processing services."""
