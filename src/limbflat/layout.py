"""
Layout Normalizer Module
전개 결과 정규화 - 원점 정렬, 스케일 복원, cm 단위 치수

Parameterizations are scale-free; the normalizer anchors the pattern at the
origin, recovers the real-world scale and converts mesh units to centimeters.
Overlap (self-intersection) of the flat pattern is not detected.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional
import logging

import numpy as np
from scipy.spatial import ConvexHull, QhullError

from .geometry_utils import signed_areas_2d, triangle_areas_3d
from .topology import boundary_edges, build_edge_map
from .unit_utils import length_to_cm

_LOGGER = logging.getLogger(__name__)

SCALE_MODES = ("area", "extent", "none")
ORIENT_MODES = ("none", "pca", "min_area")


def _readonly(arr, dtype) -> np.ndarray:
    out = np.array(arr, dtype=dtype, copy=True)
    out.flags.writeable = False
    return out


@dataclass(frozen=True)
class FlattenedPattern:
    """
    2D 재단 패턴 (불변)

    Attributes:
        vertices: (K, 2) 2D 좌표 (cm, 최소점 = (0, 0))
        faces: (M, 3) 삼각형 인덱스
        source_vertices: (K,) 2D 정점 -> 3D 정점
        seam_vertices: 절개선 3D 정점 인덱스
        seam_edges: (E, 2) 절개 엣지 (2D 인덱스)
        width_cm / height_cm: 경계 박스 크기
        area_cm2: 삼각형 면적 합
        perimeter_cm: 2D 경계 엣지 길이 합
        scale: raw 좌표 -> cm 배율
        packing_efficiency: area / (width * height)
        method: 'lscm' | 'cylindrical'
        degraded: 수렴 실패 등으로 품질이 보장되지 않음
        distortion: (M,) 삼각형별 면적 왜곡 (선택)
        overlap_checked: 항상 False (겹침 검사 미구현)
    """
    vertices: np.ndarray
    faces: np.ndarray
    source_vertices: np.ndarray
    seam_vertices: np.ndarray
    seam_edges: np.ndarray
    width_cm: float
    height_cm: float
    area_cm2: float
    perimeter_cm: float
    scale: float
    packing_efficiency: float
    method: str = "lscm"
    degraded: bool = False
    distortion: Optional[np.ndarray] = field(default=None, repr=False)
    overlap_checked: bool = False

    def __post_init__(self):
        object.__setattr__(self, "vertices", _readonly(self.vertices, np.float64).reshape(-1, 2))
        object.__setattr__(self, "faces", _readonly(self.faces, np.int64).reshape(-1, 3))
        object.__setattr__(self, "source_vertices", _readonly(self.source_vertices, np.int64).reshape(-1))
        object.__setattr__(self, "seam_vertices", _readonly(self.seam_vertices, np.int64).reshape(-1))
        object.__setattr__(self, "seam_edges", _readonly(self.seam_edges, np.int64).reshape(-1, 2))
        if self.distortion is not None:
            object.__setattr__(self, "distortion", _readonly(self.distortion, np.float64).reshape(-1))

    @property
    def n_vertices(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def n_faces(self) -> int:
        return int(self.faces.shape[0])

    @property
    def is_empty(self) -> bool:
        return self.n_vertices == 0 or self.n_faces == 0

    def with_distortion(self, distortion: np.ndarray) -> "FlattenedPattern":
        """삼각형별 왜곡 배열을 붙인 새 패턴"""
        return replace(self, distortion=np.asarray(distortion, dtype=np.float64))

    def to_dict(self) -> dict:
        return {
            "method": self.method,
            "vertices_2d": self.vertices.tolist(),
            "indices": self.faces.reshape(-1).tolist(),
            "source_vertices": self.source_vertices.tolist(),
            "seam_vertices": self.seam_vertices.tolist(),
            "seam_edges": self.seam_edges.tolist(),
            "flat_width_cm": float(self.width_cm),
            "flat_height_cm": float(self.height_cm),
            "flat_area_cm2": float(self.area_cm2),
            "flat_perimeter_cm": float(self.perimeter_cm),
            "scale": float(self.scale),
            "packing_efficiency": float(self.packing_efficiency),
            "degraded": bool(self.degraded),
            "overlap_checked": bool(self.overlap_checked),
            "distortion": None if self.distortion is None else self.distortion.tolist(),
        }


def recover_scale(
    uv: np.ndarray,
    faces: np.ndarray,
    points3d: np.ndarray,
    scale_mode: str = "area",
) -> float:
    """
    전개 좌표 -> mesh 단위 배율

    - 'area': sqrt(3D 면적 / 2D 면적)
    - 'extent': 3D 경계 박스 평균 크기 / UV 최대 크기
    - 'none': 1
    """
    mode = str(scale_mode or "area").strip().lower()
    if mode not in SCALE_MODES:
        raise ValueError(f"Unsupported scale mode: {scale_mode}")
    if mode == "none":
        return 1.0

    uv = np.asarray(uv, dtype=np.float64)
    pts = np.asarray(points3d, dtype=np.float64)
    if uv.shape[0] == 0:
        return 1.0

    if mode == "area":
        a3 = float(triangle_areas_3d(pts, faces).sum())
        a2 = float(np.abs(signed_areas_2d(uv, faces)).sum())
        if a3 > 1e-12 and a2 > 1e-12:
            s = float(np.sqrt(a3 / a2))
            if np.isfinite(s) and s > 1e-12:
                return s
        _LOGGER.debug("Area scale unavailable (a3=%.3g, a2=%.3g); using 1", a3, a2)
        return 1.0

    extent_3d = float(np.mean(pts.max(axis=0) - pts.min(axis=0)))
    extent_uv = float(np.max(uv.max(axis=0) - uv.min(axis=0)))
    if extent_uv > 1e-12 and np.isfinite(extent_3d):
        return extent_3d / extent_uv
    return 1.0


def orient_uv_pca(uv: np.ndarray) -> np.ndarray:
    """UV를 2D PCA로 회전시켜 axis-aligned 배치에 가깝게 정렬합니다."""
    out = np.asarray(uv, dtype=np.float64)[:, :2].copy()
    if out.shape[0] < 2:
        return out

    mean = out.mean(axis=0)
    centered = out - mean
    cov = centered.T @ centered / float(centered.shape[0])
    try:
        evals, evecs = np.linalg.eigh(cov)
    except np.linalg.LinAlgError:
        return out

    axes = evecs[:, np.argsort(evals)[::-1]]
    # 부호 고정(결정적) + 우수(right-handed) 유지
    for k in range(2):
        idx = int(np.argmax(np.abs(axes[:, k])))
        if axes[idx, k] < 0:
            axes[:, k] *= -1
    if float(np.linalg.det(axes)) < 0:
        axes[:, 1] *= -1
    return centered @ axes


def orient_uv_min_area(uv: np.ndarray) -> np.ndarray:
    """
    볼록 껍질 엣지 방향 중 경계 박스 면적이 최소인 방향으로 회전합니다.

    Hull 계산이 불가능하면 (점 부족, 일직선 등) PCA 정렬로 대체합니다.
    The rotation is proper, so triangle orientation is preserved.
    """
    pts = np.asarray(uv, dtype=np.float64)[:, :2]
    if pts.shape[0] < 3:
        return orient_uv_pca(pts)
    try:
        hull = ConvexHull(pts)
    except (QhullError, ValueError):
        _LOGGER.debug("Convex hull unavailable; orienting by PCA", exc_info=True)
        return orient_uv_pca(pts)

    ring = pts[hull.vertices]
    edges = np.roll(ring, -1, axis=0) - ring
    angles = np.unique(np.round(np.mod(np.arctan2(edges[:, 1], edges[:, 0]), np.pi / 2.0), 12))

    best_rot = np.eye(2)
    best_area = float("inf")
    for angle in angles:
        c, s = float(np.cos(-angle)), float(np.sin(-angle))
        rot = np.array([[c, -s], [s, c]], dtype=np.float64)
        r = ring @ rot.T
        ext = r.max(axis=0) - r.min(axis=0)
        area = float(ext[0] * ext[1])
        # landscape: width >= height
        if area < best_area * (1.0 - 1e-9):
            best_area = area
            best_rot = rot if ext[0] >= ext[1] else np.array([[0.0, 1.0], [-1.0, 0.0]]) @ rot
    return (pts - pts.mean(axis=0)) @ best_rot.T


def boundary_perimeter(points2d: np.ndarray, faces: np.ndarray) -> float:
    """2D 삼각분할의 경계 엣지 길이 합"""
    edges = boundary_edges(build_edge_map(faces))
    if not edges:
        return 0.0
    e = np.asarray(edges, dtype=np.int64)
    seg = points2d[e[:, 1]] - points2d[e[:, 0]]
    return float(np.linalg.norm(seg, axis=1).sum())


def normalize_layout(
    uv: np.ndarray,
    faces: np.ndarray,
    points3d: np.ndarray,
    *,
    source_vertices: Optional[np.ndarray] = None,
    seam_vertices: Optional[np.ndarray] = None,
    seam_edges: Optional[np.ndarray] = None,
    unit: str = "mm",
    scale_mode: str = "area",
    orient: str = "none",
    method: str = "lscm",
    degraded: bool = False,
) -> FlattenedPattern:
    """
    전개 좌표를 cm 단위 FlattenedPattern으로 정규화합니다.

    Args:
        uv: (K, 2) 파라미터 좌표
        faces: (M, 3) uv 인덱스
        points3d: (K, 3) 각 uv 정점의 3D 위치 (mesh 단위)
        source_vertices: (K,) 2D -> 3D 정점 (None이면 항등)
        seam_vertices / seam_edges: 절개선 정보 (그대로 전달)
        unit: mesh 단위
        scale_mode: 'area' (기본) | 'extent' | 'none'
        orient: 'none' | 'pca' | 'min_area' (회전 정렬, 방향 보존)

    The default 'area' mode rescales so the total 2D area equals the 3D
    surface area. 'extent' compares the mean 3D bounding-box size with the
    largest UV extent instead; it is cheaper but only approximate for curved
    surfaces. 'none' keeps the UV scale and only converts units.
    """
    orient_mode = str(orient or "none").strip().lower()
    if orient_mode not in ORIENT_MODES:
        raise ValueError(f"Unsupported orient mode: {orient}")

    uv = np.asarray(uv, dtype=np.float64)[:, :2]
    if orient_mode == "pca":
        uv = orient_uv_pca(uv)
    elif orient_mode == "min_area":
        uv = orient_uv_min_area(uv)
    faces = np.asarray(faces, dtype=np.int64)
    k = int(uv.shape[0])

    scale = recover_scale(uv, faces, points3d, scale_mode) * length_to_cm(unit)

    if k:
        flat = (uv - uv.min(axis=0)) * scale
        width, height = (float(v) for v in flat.max(axis=0))
    else:
        flat = np.zeros((0, 2), dtype=np.float64)
        width = height = 0.0

    area = float(np.abs(signed_areas_2d(flat, faces)).sum()) if faces.size else 0.0
    perimeter = boundary_perimeter(flat, faces) if faces.size else 0.0
    bbox_area = width * height
    packing = area / bbox_area if bbox_area > 1e-12 else 0.0

    return FlattenedPattern(
        vertices=flat,
        faces=faces,
        source_vertices=np.arange(k, dtype=np.int64) if source_vertices is None else source_vertices,
        seam_vertices=np.zeros(0, dtype=np.int64) if seam_vertices is None else seam_vertices,
        seam_edges=np.zeros((0, 2), dtype=np.int64) if seam_edges is None else seam_edges,
        width_cm=width,
        height_cm=height,
        area_cm2=area,
        perimeter_cm=perimeter,
        scale=float(scale),
        packing_efficiency=float(packing),
        method=str(method),
        degraded=bool(degraded),
    )
