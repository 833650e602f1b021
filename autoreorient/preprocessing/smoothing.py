"""
Smoothing of volumes before registration.

Smoothing makes the intensity-based registration more robust; the stored
images are never modified.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
import numpy as np
from scipy.ndimage import gaussian_filter
from typing import Sequence
import warnings

from autoreorient.core.errors import InputError
from autoreorient.io.loaders import load_volume


# sigma = FWHM / sqrt(8 ln 2)
FWHM_TO_SIGMA = 1.0 / np.sqrt(8.0 * np.log(2.0))


@dataclass
class SmoothedImage:
    """Smoothed voxel data with the geometry it came from."""
    volume: np.ndarray
    affine: np.ndarray
    source: str
    fwhm: float = 0.0


class ImageSmoother(ABC):
    """Abstract smoother: produces a smoothed, in-memory copy of an image."""

    @abstractmethod
    def smooth(self, image: str, fwhm: float) -> SmoothedImage:
        """
        Smooth an image.

        Args:
            image: Image identifier
            fwhm: Target smoothness in mm (0 = no smoothing)

        Returns:
            SmoothedImage

        Raises:
            InputError: If the image cannot be found
        """
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class VolumeSmoother(ImageSmoother):
    """
    Gaussian smoothing of images loaded with nibabel.

    Args:
        to_uint8: Rescale the smoothed volume to 0..255 (uint8)
    """

    def __init__(self, to_uint8: bool = True):
        self.to_uint8 = to_uint8

    def smooth(self, image: str, fwhm: float) -> SmoothedImage:
        try:
            volume, metadata = load_volume(image)
        except FileNotFoundError as e:
            raise InputError(str(e)) from e

        smoothed = smooth_to_fwhm(volume, metadata['voxel_sizes'], fwhm)
        if self.to_uint8:
            smoothed = rescale_to_uint8(smoothed)

        return SmoothedImage(
            volume=smoothed,
            affine=metadata['affine'],
            source=str(image),
            fwhm=float(fwhm),
        )

    def __repr__(self) -> str:
        return f"VolumeSmoother(to_uint8={self.to_uint8})"


def smooth_to_fwhm(volume: np.ndarray,
                   voxel_sizes: Sequence[float],
                   fwhm: float,
                   ) -> np.ndarray:
    """
    Smooth a volume so that its total smoothness is `fwhm` mm.

    The intrinsic smoothness of each axis (one voxel) is subtracted in
    quadrature, so axes with voxels already coarser than `fwhm` are left
    alone.

    Args:
        volume: 3D numpy array
        voxel_sizes: Voxel edge lengths (mm) along each array axis
        fwhm: Target full width at half maximum in mm (0 = none)

    Returns:
        Smoothed float32 volume (same shape as input)
    """
    volume = np.asarray(volume, dtype=np.float32)
    volume = np.where(np.isfinite(volume), volume, 0).astype(np.float32)

    if fwhm < 0:
        raise ValueError(f"FWHM must be non-negative, got {fwhm}")
    if fwhm == 0:
        return volume

    voxel_sizes = np.asarray(voxel_sizes, dtype=np.float64)
    if voxel_sizes.shape != (volume.ndim,) or np.any(voxel_sizes <= 0):
        raise ValueError(f"Invalid voxel sizes {tuple(voxel_sizes)} for shape {volume.shape}")

    extra_fwhm = np.sqrt(np.maximum(fwhm ** 2 - voxel_sizes ** 2, 0.0))
    sigmas = extra_fwhm / voxel_sizes * FWHM_TO_SIGMA

    if np.all(sigmas == 0):
        return volume

    return gaussian_filter(volume, sigma=sigmas, mode='nearest').astype(np.float32)


def rescale_to_uint8(volume: np.ndarray) -> np.ndarray:
    """
    Linearly rescale intensities to 0..255.

    Args:
        volume: Numpy array

    Returns:
        uint8 array (same shape as input)
    """
    finite = volume[np.isfinite(volume)]

    if finite.size == 0:
        warnings.warn("Volume has no finite values, returning zeros")
        return np.zeros(volume.shape, dtype=np.uint8)

    low, high = float(finite.min()), float(finite.max())
    if high - low < 1e-8:
        warnings.warn("Intensity range near zero, returning zeros")
        return np.zeros(volume.shape, dtype=np.uint8)

    scaled = (np.nan_to_num(volume, nan=low) - low) * (255.0 / (high - low))
    return np.clip(np.round(scaled), 0, 255).astype(np.uint8)
