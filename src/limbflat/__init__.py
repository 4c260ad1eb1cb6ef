"""
limbflat - mesh measurement and flat-pattern unwrapping for scanned limbs and sockets
"""

import logging

from .errors import ConvergenceWarning, InputError, TopologyWarning
from .mesh_data import MeshData, ensure_valid_mesh, weld_vertices
from .topology import BoundaryLoop, TopologyReport, analyze_mesh
from .seams import SeamPlacement, plan_seam
from .lscm import LSCMResult, cut_mesh_along_seam, lscm_parameterize
from .cylindrical import CylindricalResult, cylindrical_unwrap, is_roughly_cylindrical
from .layout import FlattenedPattern, normalize_layout
from .validation import (
    DistortionReport,
    QualityIssue,
    QualityThresholds,
    ValidationResult,
    compute_distortion,
    validate_pattern,
)
from .measurements import (
    CircumferenceSample,
    MeasurementRecord,
    MeshQuality,
    calculate_all_measurements,
)
from .unwrap import UnwrapResult, unwrap_hybrid, unwrap_mesh

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Errors
    'InputError',
    'TopologyWarning',
    'ConvergenceWarning',
    # Mesh input
    'MeshData',
    'ensure_valid_mesh',
    'weld_vertices',
    # Topology
    'BoundaryLoop',
    'TopologyReport',
    'analyze_mesh',
    # Seams
    'SeamPlacement',
    'plan_seam',
    # Parameterization
    'LSCMResult',
    'cut_mesh_along_seam',
    'lscm_parameterize',
    'CylindricalResult',
    'cylindrical_unwrap',
    'is_roughly_cylindrical',
    # Layout / validation
    'FlattenedPattern',
    'normalize_layout',
    'DistortionReport',
    'QualityIssue',
    'QualityThresholds',
    'ValidationResult',
    'compute_distortion',
    'validate_pattern',
    # Measurements
    'CircumferenceSample',
    'MeasurementRecord',
    'MeshQuality',
    'calculate_all_measurements',
    # Pipeline
    'UnwrapResult',
    'unwrap_mesh',
    'unwrap_hybrid',
]
