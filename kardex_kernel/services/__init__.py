"""Kernel services - sequence allocation, stock, lot and movement ledgers."""
