"""napari-lod: adaptive level-of-detail access to chunked multiscale images.

The package is split into the data side (`napari_lod.data`: coordinate
transforms, chunk sources, the multiresolution accessor and its cache), the
per-layer scale controller (`napari_lod.lod`), and the napari consumer adapter
(`napari_lod.viewer`).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
