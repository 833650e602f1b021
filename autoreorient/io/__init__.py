"""I/O utilities for images, headers and transforms."""

from autoreorient.io.loaders import load_volume, voxel_sizes
from autoreorient.io.metadata import (
    MetadataStore,
    MemoryMetadataStore,
    NiftiMetadataStore,
    split_extension,
)
from autoreorient.io.savers import save_transform, load_transform

__all__ = [
    'load_volume',
    'voxel_sizes',
    'MetadataStore',
    'MemoryMetadataStore',
    'NiftiMetadataStore',
    'split_extension',
    'save_transform',
    'load_transform',
]
