"""
Utility functions.
"""

from .geometry import (
    vector_zero,
    matrix_zero,
    matrix_identity,
    as_pose,
    as_matrix,
    matrix_unitary,
    wrap_angle,
)

from .pdf import (
    DiscretePDF,
    GaussianPDF,
    EmptyDistributionError,
    bivariate_gaussian,
)

from .resampling import (
    kld_sample_limit,
    kld_sample_limit_unclamped,
    kld_z_from_confidence,
    effective_sample_size,
    sum_square_weights,
)

from .metrics import (
    compute_cep_stats,
    circular_mean,
    circular_variance,
    compute_pose_error,
)

__all__ = [
    "vector_zero",
    "matrix_zero",
    "matrix_identity",
    "as_pose",
    "as_matrix",
    "matrix_unitary",
    "wrap_angle",
    "DiscretePDF",
    "GaussianPDF",
    "EmptyDistributionError",
    "bivariate_gaussian",
    "kld_sample_limit",
    "kld_sample_limit_unclamped",
    "kld_z_from_confidence",
    "effective_sample_size",
    "sum_square_weights",
    "compute_cep_stats",
    "circular_mean",
    "circular_variance",
    "compute_pose_error",
]
