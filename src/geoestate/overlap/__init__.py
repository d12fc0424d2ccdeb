"""Overlap detection, classification, resolution and reporting."""
