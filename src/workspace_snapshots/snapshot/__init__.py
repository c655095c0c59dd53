"""Snapshot capture, diff, restore and retention."""
