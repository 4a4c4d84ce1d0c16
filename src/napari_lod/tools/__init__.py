"""Command-line helpers for napari-lod."""
