"""Realtime planning poker core."""
