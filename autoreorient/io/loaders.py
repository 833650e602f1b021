"""
Volume loading with voxel-to-world metadata.

Supports every format nibabel reads (NIfTI-1/2, Analyze, MGH, ...).
"""

import numpy as np
import nibabel as nib
from pathlib import Path
from typing import Tuple, Dict, Any


def load_volume(path: str) -> Tuple[np.ndarray, Dict[str, Any]]:
    """
    Load a 3D volume with its metadata.

    4D images are reduced to their first volume.

    Args:
        path: Path to image file

    Returns:
        volume: 3D float32 array in voxel (i, j, k) order
        metadata: Dictionary containing:
            - affine: 4x4 voxel-to-world matrix (RAS, mm)
            - voxel_sizes: (vi, vj, vk) in mm
            - shape: original image shape
            - dtype: on-disk data type
            - path: original file path

    Raises:
        FileNotFoundError: If file does not exist
        ValueError: If the image has fewer than 3 dimensions
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    img = nib.load(str(path))
    shape = img.shape
    if len(shape) < 3:
        raise ValueError(f"Expected a 3D image, got shape {shape}: {path}")

    if len(shape) > 3:
        # Only the first frame is needed for registration
        first_frame = (slice(None),) * 3 + (0,) * (len(shape) - 3)
        volume = np.asarray(img.dataobj[first_frame], dtype=np.float32)
    else:
        volume = np.asarray(img.dataobj, dtype=np.float32)

    affine = np.asarray(img.affine, dtype=np.float64)

    metadata = {
        'affine': affine,
        'voxel_sizes': voxel_sizes(affine),
        'shape': tuple(shape),
        'dtype': img.get_data_dtype(),
        'path': str(path),
    }

    return volume, metadata


def voxel_sizes(affine: np.ndarray) -> Tuple[float, float, float]:
    """Voxel edge lengths in mm (column norms of the linear block)."""
    sizes = np.sqrt(np.sum(np.asarray(affine)[:3, :3] ** 2, axis=0))
    return tuple(float(s) for s in sizes)
