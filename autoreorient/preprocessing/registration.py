"""
Affine registration to a template using SimpleITK.

Estimates the world-to-world transform that brings an image into the space of
a template. Images are exchanged with SimpleITK in its LPS convention and the
result is returned in the RAS convention used by nibabel headers.
"""

from abc import ABC, abstractmethod
import numpy as np
import SimpleITK as sitk
import warnings
from typing import Tuple, Sequence

from autoreorient.core.errors import EstimationError
from autoreorient.preprocessing.smoothing import SmoothedImage
from autoreorient.transforms.rigid import nearest_orthonormal


REGISTRATION_MODES = ('mni', 'affine', 'rigid')

# RAS <-> LPS: negate the first two world axes
LPS_FLIP = np.diag([-1.0, -1.0, 1.0, 1.0])


class TransformEstimator(ABC):
    """Abstract registration estimator."""

    @abstractmethod
    def estimate(self,
                 template: SmoothedImage,
                 moving: SmoothedImage,
                 mode: str = 'mni',
                 ) -> Tuple[np.ndarray, float]:
        """
        Estimate the transform from moving world space to template space.

        Args:
            template: Template image (already in the target space)
            moving: Smoothed image to align
            mode: Registration mode, one of REGISTRATION_MODES

        Returns:
            affine: 4x4 world-to-world matrix (RAS, mm) such that
                affine @ moving.affine maps moving voxels onto the template
            scale: Auxiliary global scale estimate

        Raises:
            EstimationError: If the registration fails
        """
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class SitkAffineEstimator(TransformEstimator):
    """
    Intensity-based registration with SimpleITK.

    Args:
        metric: 'MI' (Mattes mutual information) or 'MSE' (mean squared error)
        histogram_bins: Bins for the mutual information metric
        sampling_percentage: Fraction of voxels sampled by the metric
        learning_rate: Gradient descent learning rate
        num_iterations: Maximum iterations per resolution level
        shrink_factors: Pyramid shrink factors, coarse to fine
        smoothing_sigmas: Pyramid smoothing (mm), coarse to fine
        initializer: 'moments' (centres of mass) or 'geometry' (image centres)
        seed: Seed for metric sampling
        verbose: Print optimizer outcome
    """

    def __init__(self,
                 metric: str = 'MI',
                 histogram_bins: int = 50,
                 sampling_percentage: float = 0.1,
                 learning_rate: float = 1.0,
                 num_iterations: int = 200,
                 shrink_factors: Sequence[int] = (4, 2, 1),
                 smoothing_sigmas: Sequence[float] = (2.0, 1.0, 0.0),
                 initializer: str = 'moments',
                 seed: int = 42,
                 verbose: bool = False,
                 ):
        if metric not in ('MI', 'MSE'):
            raise ValueError(f"Unknown metric: {metric}")
        if initializer not in ('moments', 'geometry'):
            raise ValueError(f"Unknown initializer: {initializer}")
        if len(shrink_factors) != len(smoothing_sigmas):
            raise ValueError("shrink_factors and smoothing_sigmas must have the same length")

        self.metric = metric
        self.histogram_bins = histogram_bins
        self.sampling_percentage = sampling_percentage
        self.learning_rate = learning_rate
        self.num_iterations = num_iterations
        self.shrink_factors = [int(s) for s in shrink_factors]
        self.smoothing_sigmas = [float(s) for s in smoothing_sigmas]
        self.initializer = initializer
        self.seed = seed
        self.verbose = verbose

    @classmethod
    def from_config(cls, config, verbose: bool = False) -> 'SitkAffineEstimator':
        """Build from an EstimationConfig."""
        return cls(
            metric=config.metric,
            histogram_bins=config.histogram_bins,
            sampling_percentage=config.sampling_percentage,
            learning_rate=config.learning_rate,
            num_iterations=config.num_iterations,
            shrink_factors=config.shrink_factors,
            smoothing_sigmas=config.smoothing_sigmas,
            initializer=config.initializer,
            seed=config.seed,
            verbose=verbose,
        )

    def estimate(self,
                 template: SmoothedImage,
                 moving: SmoothedImage,
                 mode: str = 'mni',
                 ) -> Tuple[np.ndarray, float]:
        if mode not in REGISTRATION_MODES:
            raise ValueError(f"Unknown registration mode: {mode} (expected one of {REGISTRATION_MODES})")

        fixed_img = volume_to_sitk(template.volume, template.affine)
        moving_img = volume_to_sitk(moving.volume, moving.affine)

        # Stage 1: rigid alignment from the centred initial transform
        if self.verbose:
            print("    Rigid stage...")
        rigid = self._register(fixed_img, moving_img, self._initial_rigid(fixed_img, moving_img))
        final_transform = rigid

        # Stage 2: 12-parameter affine starting from the rigid result
        if mode != 'rigid':
            initial_affine = sitk.AffineTransform(3)
            initial_affine.SetMatrix(rigid.GetMatrix())
            initial_affine.SetCenter(rigid.GetCenter())
            initial_affine.SetTranslation(rigid.GetTranslation())
            if self.verbose:
                print("    Affine stage...")
            final_transform = self._register(fixed_img, moving_img, initial_affine)

        # The optimized transform maps template points to moving points (LPS)
        fixed_to_moving = transform_to_matrix(final_transform)
        try:
            moving_to_fixed = np.linalg.inv(fixed_to_moving)
        except np.linalg.LinAlgError as e:
            raise EstimationError(f"Estimated transform is singular: {e}") from e

        affine = LPS_FLIP @ moving_to_fixed @ LPS_FLIP
        if not np.all(np.isfinite(affine)):
            raise EstimationError("Estimated transform contains NaN or infinite values")

        scale = float(np.cbrt(abs(np.linalg.det(affine[:3, :3]))))
        return affine, scale

    def _register(self,
                  fixed_img: sitk.Image,
                  moving_img: sitk.Image,
                  initial_transform: sitk.Transform,
                  ) -> sitk.Transform:
        """Optimize `initial_transform` and return it as its concrete type."""
        registration = sitk.ImageRegistrationMethod()

        # Similarity metric
        if self.metric == 'MI':
            registration.SetMetricAsMattesMutualInformation(numberOfHistogramBins=self.histogram_bins)
        else:
            registration.SetMetricAsMeanSquares()

        registration.SetMetricSamplingStrategy(registration.RANDOM)
        registration.SetMetricSamplingPercentage(self.sampling_percentage, self.seed)

        # Optimizer
        registration.SetOptimizerAsGradientDescent(
            learningRate=self.learning_rate,
            numberOfIterations=self.num_iterations,
            convergenceMinimumValue=1e-6,
            convergenceWindowSize=10
        )
        registration.SetOptimizerScalesFromPhysicalShift()

        # Interpolator
        registration.SetInterpolator(sitk.sitkLinear)

        try:
            registration.SetInitialTransform(initial_transform, inPlace=True)

            # Multi-resolution
            registration.SetShrinkFactorsPerLevel(shrinkFactors=self.shrink_factors)
            registration.SetSmoothingSigmasPerLevel(smoothingSigmas=self.smoothing_sigmas)
            registration.SmoothingSigmasAreSpecifiedInPhysicalUnitsOn()

            final_transform = _concrete(registration.Execute(fixed_img, moving_img))
        except RuntimeError as e:
            raise EstimationError(f"Registration failed: {e}") from e

        metric_value = registration.GetMetricValue()
        if not np.isfinite(metric_value):
            raise EstimationError(f"Registration produced a non-finite metric value: {metric_value}")

        stop_condition = registration.GetOptimizerStopConditionDescription()
        if 'Maximum number of iterations' in stop_condition:
            warnings.warn(f"Registration stopped before convergence: {stop_condition}")

        if self.verbose:
            print(f"    Optimizer: {stop_condition}")
            print(f"    Final metric value: {metric_value:.6f}")

        return final_transform

    def _initial_rigid(self, fixed_img: sitk.Image, moving_img: sitk.Image) -> sitk.Transform:
        """Euler transform initialized by aligning image centres."""
        if self.initializer == 'moments':
            init_mode = sitk.CenteredTransformInitializerFilter.MOMENTS
        else:
            init_mode = sitk.CenteredTransformInitializerFilter.GEOMETRY

        return _concrete(sitk.CenteredTransformInitializer(
            fixed_img,
            moving_img,
            sitk.Euler3DTransform(),
            init_mode
        ))

    def __repr__(self) -> str:
        return f"SitkAffineEstimator(metric={self.metric}, iterations={self.num_iterations})"


def volume_to_sitk(volume: np.ndarray, affine: np.ndarray) -> sitk.Image:
    """
    Convert a voxel array and its RAS voxel-to-world affine to a SimpleITK image.

    Shear cannot be represented by SimpleITK's direction cosines; the
    direction is projected onto the nearest orthonormal matrix.

    Args:
        volume: 3D array in voxel (i, j, k) order
        affine: 4x4 voxel-to-world matrix (RAS, mm)

    Returns:
        Float32 SimpleITK image in LPS physical space
    """
    affine = np.asarray(affine, dtype=np.float64)
    lps_affine = LPS_FLIP @ affine

    spacing = np.sqrt(np.sum(lps_affine[:3, :3] ** 2, axis=0))
    if np.any(spacing <= 0):
        raise ValueError(f"Invalid voxel sizes: {tuple(spacing)}")
    direction = nearest_orthonormal(lps_affine[:3, :3] / spacing)

    # SimpleITK arrays are indexed (k, j, i)
    array = np.ascontiguousarray(np.transpose(np.asarray(volume, dtype=np.float32), (2, 1, 0)))
    image = sitk.GetImageFromArray(array)
    image.SetSpacing([float(s) for s in spacing])
    image.SetOrigin([float(o) for o in lps_affine[:3, 3]])
    image.SetDirection([float(d) for d in direction.flatten()])

    return image


def transform_to_matrix(transform: sitk.Transform) -> np.ndarray:
    """
    Extract the 4x4 homogeneous matrix of a SimpleITK linear transform.

    ITK applies T(x) = A (x - c) + c + t, so the homogeneous translation is
    t + c - A c.

    Args:
        transform: SimpleITK transform with a matrix, center and translation

    Returns:
        4x4 transformation matrix (same physical convention as the transform)
    """
    transform = _concrete(transform)
    if not all(hasattr(transform, name) for name in ('GetMatrix', 'GetCenter', 'GetTranslation')):
        raise ValueError(f"Unsupported transform type: {type(transform)}")

    dim = transform.GetDimension()
    linear = np.array(transform.GetMatrix(), dtype=np.float64).reshape(dim, dim)
    center = np.array(transform.GetCenter(), dtype=np.float64)
    translation = np.array(transform.GetTranslation(), dtype=np.float64)

    matrix = np.eye(dim + 1)
    matrix[:dim, :dim] = linear
    matrix[:dim, dim] = translation + center - linear @ center
    return matrix


def _concrete(transform: sitk.Transform) -> sitk.Transform:
    """Downcast a generic SimpleITK transform to its concrete type."""
    if hasattr(transform, 'Downcast'):
        transform = transform.Downcast()
    if isinstance(transform, sitk.CompositeTransform) and transform.GetNumberOfTransforms() == 1:
        transform = _concrete(transform.GetNthTransform(0))
    return transform
