"""Viewer adapters for the LOD controller."""

from .napari_consumer import NapariLayerConsumer

__all__ = ["NapariLayerConsumer"]
