"""Smoothing and registration used to estimate the reorientation."""

from autoreorient.preprocessing.smoothing import (
    FWHM_TO_SIGMA,
    SmoothedImage,
    ImageSmoother,
    VolumeSmoother,
    smooth_to_fwhm,
    rescale_to_uint8,
)
from autoreorient.preprocessing.registration import (
    REGISTRATION_MODES,
    LPS_FLIP,
    TransformEstimator,
    SitkAffineEstimator,
    volume_to_sitk,
    transform_to_matrix,
)

__all__ = [
    'FWHM_TO_SIGMA',
    'SmoothedImage',
    'ImageSmoother',
    'VolumeSmoother',
    'smooth_to_fwhm',
    'rescale_to_uint8',
    'REGISTRATION_MODES',
    'LPS_FLIP',
    'TransformEstimator',
    'SitkAffineEstimator',
    'volume_to_sitk',
    'transform_to_matrix',
]
