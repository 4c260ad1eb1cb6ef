"""
Measurement Engine Module
메쉬 물리 측정 - 치수, 표면적, 부피, 둘레 프로파일, 메쉬 품질

All reported values are converted from `mesh.unit` to cm / cm^2 / cm^3.
Volume uses the signed-tetrahedron sum, so holes or inconsistent winding give
an inaccurate (but unflagged) value; `MeshQuality` exposes watertightness so
callers can judge it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional
import logging
import math

import numpy as np
import trimesh

from .geometry_utils import axis_frame, normalize_axis_choice
from .mesh_data import MeshData, ensure_valid_mesh
from .runtime_defaults import DEFAULTS
from .topology import build_edge_map
from .unit_utils import area_to_cm2, length_to_cm, volume_to_cm3

_LOGGER = logging.getLogger(__name__)

SLICE_METHODS = ("window", "section")


@dataclass(frozen=True)
class CircumferenceSample:
    height_cm: float
    height_percent: float
    circumference_cm: float
    diameter_cm: float
    area_cm2: float
    point_count: int = 0

    def to_dict(self) -> dict:
        return {
            "height_cm": self.height_cm,
            "height_percent": self.height_percent,
            "circumference_cm": self.circumference_cm,
            "diameter_cm": self.diameter_cm,
            "area_cm2": self.area_cm2,
        }


@dataclass(frozen=True)
class MeshQuality:
    """
    Attributes:
        is_watertight: 모든 엣지가 정확히 2개 삼각형에 인접
        has_holes: 인접 삼각형 1개인 엣지 존재
        non_manifold_edges: 인접 삼각형 3개 이상인 엣지 수
        bounding_box: [[min], [max]] (mesh 단위)
    """
    vertex_count: int
    face_count: int
    is_watertight: bool
    has_holes: bool
    non_manifold_edges: int
    bounding_box: np.ndarray

    def to_dict(self) -> dict:
        return {
            "vertex_count": self.vertex_count,
            "face_count": self.face_count,
            "is_watertight": self.is_watertight,
            "has_holes": self.has_holes,
            "non_manifold_edges": self.non_manifold_edges,
            "bounding_box": {
                "min": [float(v) for v in self.bounding_box[0]],
                "max": [float(v) for v in self.bounding_box[1]],
            },
        }


@dataclass
class MeasurementRecord:
    length_cm: float
    width_cm: float
    depth_cm: float
    surface_area_cm2: float
    volume_cm3: float
    circumferences: List[CircumferenceSample] = field(default_factory=list)
    mesh_info: Optional[MeshQuality] = None
    height_axis: str = "z"

    @property
    def max_circumference_cm(self) -> float:
        if not self.circumferences:
            return 0.0
        return max(c.circumference_cm for c in self.circumferences)

    def to_dict(self) -> dict:
        return {
            "length_cm": self.length_cm,
            "width_cm": self.width_cm,
            "depth_cm": self.depth_cm,
            "surface_area_cm2": self.surface_area_cm2,
            "volume_cm3": self.volume_cm3,
            "height_axis": self.height_axis,
            "circumferences": [c.to_dict() for c in self.circumferences],
            "mesh_info": None if self.mesh_info is None else self.mesh_info.to_dict(),
        }


def calculate_surface_area(mesh: MeshData) -> float:
    """표면적 (mesh 단위^2)"""
    return float(mesh.face_areas().sum())


def calculate_volume(mesh: MeshData) -> float:
    """부피 (mesh 단위^3): 원점 기준 signed tetrahedron 합의 절댓값"""
    tri = np.asarray(mesh.vertices, dtype=np.float64)[np.asarray(mesh.faces, dtype=np.int64)]
    signed = np.einsum("ij,ij->i", tri[:, 0], np.cross(tri[:, 1], tri[:, 2])) / 6.0
    return float(abs(signed.sum()))


def closed_polyline_length(points2d: np.ndarray) -> float:
    """
    점들을 중심 기준 각도로 정렬한 닫힌 다각형 둘레. 3점 미만이면 0.
    """
    pts = np.asarray(points2d, dtype=np.float64).reshape(-1, 2)
    if pts.shape[0] < 3:
        return 0.0
    center = pts.mean(axis=0)
    angles = np.arctan2(pts[:, 1] - center[1], pts[:, 0] - center[0])
    ordered = pts[np.argsort(angles, kind="stable")]
    seg = np.roll(ordered, -1, axis=0) - ordered
    return float(np.linalg.norm(seg, axis=1).sum())


def _section_length(tm: "trimesh.Trimesh", origin: np.ndarray, normal: np.ndarray) -> tuple[float, int]:
    segments = trimesh.intersections.mesh_plane(tm, plane_normal=normal, plane_origin=origin)
    segments = np.asarray(segments, dtype=np.float64).reshape(-1, 2, 3)
    if segments.shape[0] == 0:
        return 0.0, 0
    return float(np.linalg.norm(segments[:, 1] - segments[:, 0], axis=1).sum()), int(segments.shape[0])


def calculate_circumferences(
    mesh: MeshData,
    sample_count: Optional[int] = None,
    *,
    height_axis: str = "z",
    slice_method: str = "window",
) -> List[CircumferenceSample]:
    """
    높이 축을 따라 균등 간격으로 둘레를 샘플링합니다.

    Args:
        mesh: 입력 메쉬
        sample_count: 샘플 수 S (None이면 DEFAULTS, 2 이상)
        height_axis: 'x' | 'y' | 'z' (기본 z)
        slice_method: 'window' (목표 높이 +-간격/2 안의 정점을 각도 정렬)
            | 'section' (trimesh 평면 단면 선분 길이 합)

    Returns:
        높이 순서의 CircumferenceSample 목록 (cm)
    """
    samples = int(DEFAULTS.circumference_samples if sample_count is None else sample_count)
    if samples < 2:
        raise ValueError(f"sample_count must be >= 2, got {samples}")
    method = str(slice_method or "window").strip().lower()
    if method not in SLICE_METHODS:
        raise ValueError(f"Unsupported slice method: {slice_method}")

    axis_name = normalize_axis_choice(height_axis)
    axis, e1, e2 = axis_frame(axis_name)
    vertices = np.asarray(mesh.vertices, dtype=np.float64)
    heights = vertices @ axis
    h_min = float(heights.min())
    h_max = float(heights.max())
    h_range = h_max - h_min
    tolerance = h_range / samples / 2.0

    to_cm = length_to_cm(mesh.unit)
    tm = mesh.to_trimesh() if method == "section" else None
    planar = np.stack([vertices @ e1, vertices @ e2], axis=1)

    results: List[CircumferenceSample] = []
    for s in range(samples):
        frac = s / (samples - 1)
        target = h_min + frac * h_range

        if tm is not None:
            # end planes sit exactly on the rims; nudge them inside the surface
            nudge = 1e-6 * h_range
            plane_h = min(max(target, h_min + nudge), h_max - nudge)
            circumference, count = _section_length(tm, axis * plane_h, axis)
        else:
            near = np.abs(heights - target) < tolerance
            count = int(np.count_nonzero(near))
            circumference = closed_polyline_length(planar[near])

        diameter = circumference / math.pi
        results.append(
            CircumferenceSample(
                height_cm=(target - h_min) * to_cm,
                height_percent=frac * 100.0,
                circumference_cm=circumference * to_cm,
                diameter_cm=diameter * to_cm,
                area_cm2=math.pi * (diameter * to_cm / 2.0) ** 2,
                point_count=count,
            )
        )

    return results


def calculate_mesh_info(mesh: MeshData) -> MeshQuality:
    """엣지 인접 수 기반 메쉬 품질 플래그"""
    edge_map = build_edge_map(mesh.faces)
    counts = np.fromiter((len(t) for t in edge_map.values()), dtype=np.int64, count=len(edge_map))
    return MeshQuality(
        vertex_count=mesh.n_vertices,
        face_count=mesh.n_faces,
        is_watertight=bool(counts.size > 0 and np.all(counts == 2)),
        has_holes=bool(np.any(counts == 1)),
        non_manifold_edges=int(np.count_nonzero(counts > 2)),
        bounding_box=mesh.bounds.copy(),
    )


def calculate_all_measurements(
    mesh: MeshData,
    *,
    sample_count: Optional[int] = None,
    height_axis: str = "z",
    slice_method: str = "window",
) -> MeasurementRecord:
    """
    전체 측정

    Raises:
        InputError: 잘못된 입력 메쉬
    """
    ensure_valid_mesh(mesh)
    axis_name = normalize_axis_choice(height_axis)
    if axis_name == "auto":
        axis_name = "z"
    k = "xyz".index(axis_name)
    others = [i for i in range(3) if i != k]

    to_cm = length_to_cm(mesh.unit)
    extents = mesh.extents
    info = calculate_mesh_info(mesh)
    if not info.is_watertight:
        _LOGGER.info(
            "Mesh is not watertight (holes=%s, non-manifold edges=%d); volume may be inaccurate",
            info.has_holes, info.non_manifold_edges,
        )

    return MeasurementRecord(
        length_cm=float(extents[k]) * to_cm,
        width_cm=float(extents[others[0]]) * to_cm,
        depth_cm=float(extents[others[1]]) * to_cm,
        surface_area_cm2=calculate_surface_area(mesh) * area_to_cm2(mesh.unit),
        volume_cm3=calculate_volume(mesh) * volume_to_cm3(mesh.unit),
        circumferences=calculate_circumferences(
            mesh, sample_count, height_axis=axis_name, slice_method=slice_method,
        ),
        mesh_info=info,
        height_axis=axis_name,
    )
