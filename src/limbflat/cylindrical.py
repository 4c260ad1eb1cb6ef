"""
Cylindrical Unwrapper Module
원통 전개 - 축 기준 각도/높이 투영 + seam을 가로지르는 삼각형 분할

x = (theta + pi) / (2 pi) * C   (C = 2 pi * 평균 반지름)
y = height - min(height)

Triangles whose x-span exceeds `split_ratio * C` wrap around the angle seam;
their low-side corners are re-pointed at duplicates shifted by +C. Each
original vertex gets at most one duplicate so the split strip stays connected.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional
import logging
import math

import numpy as np

from .geometry_utils import cylindrical_coordinates, resolve_axis, wrap_angle
from .mesh_data import MeshData, ensure_valid_mesh
from .runtime_defaults import DEFAULTS

_LOGGER = logging.getLogger(__name__)

# bounding-box aspect limits for is_roughly_cylindrical
MIN_CROSS_SECTION_RATIO = 0.6
MIN_LENGTH_RATIO = 0.8


def is_roughly_cylindrical(
    mesh: MeshData,
    axis: str = "auto",
    *,
    min_cross_ratio: float = MIN_CROSS_SECTION_RATIO,
    min_length_ratio: float = MIN_LENGTH_RATIO,
) -> bool:
    """
    경계 박스 비율로 원통형 여부를 대략 판단합니다.

    단면 두 축 크기가 비슷하고 (min/max >= min_cross_ratio), 축 방향 길이가
    단면보다 크게 작지 않으면 (length/max_cross >= min_length_ratio) True.
    """
    vertices = np.asarray(mesh.vertices, dtype=np.float64)
    faces = np.asarray(mesh.faces, dtype=np.int64)
    if faces.size:
        vertices = vertices[np.unique(faces.reshape(-1))]
    if vertices.ndim != 2 or vertices.shape[0] < 4:
        return False

    resolved = resolve_axis(vertices, axis)
    k = "xyz".index(resolved)
    extents = vertices.max(axis=0) - vertices.min(axis=0)
    length = float(extents[k])
    cross = [float(extents[i]) for i in range(3) if i != k]
    cross_max = max(cross)
    if cross_max <= 1e-12:
        return False

    cross_ratio = min(cross) / cross_max
    length_ratio = length / cross_max
    return bool(cross_ratio >= float(min_cross_ratio) and length_ratio >= float(min_length_ratio))


@dataclass
class CylindricalResult:
    """
    Attributes:
        uv: (K, 2) 전개 좌표 (mesh 단위, K >= 삼각형이 참조하는 정점 수)
        faces: (M, 3) 분할 후 인덱스
        source_vertices: (K,) 2D 정점 -> 원본 정점
        seam_vertices: 복제된 원본 정점 (정렬)
        seam_edges: (E, 2) 분할 삼각형에서 양 끝이 모두 복제된 엣지 (2D 인덱스)
        circumference: 기준 둘레 C (mesh 단위)
        axis: 사용한 축
        split_triangles: seam을 가로질러 분할한 삼각형 수
    """
    uv: np.ndarray
    faces: np.ndarray
    source_vertices: np.ndarray
    seam_vertices: np.ndarray
    seam_edges: np.ndarray
    circumference: float
    axis: str
    split_triangles: int = 0

    @property
    def max_triangle_span(self) -> float:
        """분할 후 삼각형 x-span 최댓값"""
        if self.faces.shape[0] == 0:
            return 0.0
        x = self.uv[self.faces, 0]
        return float(np.max(x.max(axis=1) - x.min(axis=1)))


def cylindrical_unwrap(
    mesh: MeshData,
    *,
    axis: str = "auto",
    split_ratio: Optional[float] = None,
) -> CylindricalResult:
    """
    원통 전개

    Args:
        mesh: 입력 메쉬 (수정하지 않음)
        axis: 'auto' | 'x' | 'y' | 'z'
        split_ratio: seam 분할 기준 (C 대비 x-span 비율, None이면 DEFAULTS)

    Returns:
        CylindricalResult (mesh 단위 좌표)
    """
    ensure_valid_mesh(mesh)
    ratio = float(DEFAULTS.seam_split_ratio if split_ratio is None else split_ratio)

    # only vertices referenced by a triangle take part in the pattern
    used, local_faces = np.unique(np.asarray(mesh.faces, dtype=np.int64), return_inverse=True)
    vertices = np.asarray(mesh.vertices, dtype=np.float64)[used]
    faces = local_faces.reshape(-1, 3).astype(np.int64)
    n = int(vertices.shape[0])

    coords = cylindrical_coordinates(vertices, axis)
    theta = wrap_angle(coords.theta)

    mean_radius = float(np.mean(coords.radius))
    circumference = 2.0 * math.pi * mean_radius
    if not np.isfinite(circumference) or circumference < 1e-12:
        _LOGGER.warning("Cylindrical unwrap: mean radius is ~0; using unit circumference")
        circumference = 1.0

    x = (theta + math.pi) / (2.0 * math.pi) * circumference
    y = coords.height - float(coords.height.min())

    tri_x = x[faces]
    spans = tri_x.max(axis=1) - tri_x.min(axis=1)
    crossing = np.flatnonzero(spans > ratio * circumference)

    new_faces = faces.copy()
    arena: Dict[int, int] = {}
    extra_uv: List[tuple[float, float]] = []
    seam_edges: List[tuple[int, int]] = []
    half = 0.5 * circumference

    for t in crossing:
        t = int(t)
        replaced = [False, False, False]
        for k in range(3):
            v = int(faces[t, k])
            if x[v] >= half:
                continue
            dup = arena.get(v)
            if dup is None:
                dup = n + len(extra_uv)
                arena[v] = dup
                extra_uv.append((float(x[v] + circumference), float(y[v])))
            new_faces[t, k] = dup
            replaced[k] = True

        for k in range(3):
            k2 = (k + 1) % 3
            if replaced[k] and replaced[k2]:
                a, b = int(new_faces[t, k]), int(new_faces[t, k2])
                seam_edges.append((a, b) if a < b else (b, a))

    uv = np.stack([x, y], axis=1)
    if extra_uv:
        uv = np.vstack([uv, np.asarray(extra_uv, dtype=np.float64)])

    dup_local = np.fromiter(arena.keys(), dtype=np.int64, count=len(arena))
    source_vertices = used[np.concatenate([np.arange(n, dtype=np.int64), dup_local])]
    dup_sources = used[dup_local]
    if seam_edges:
        seam_edge_arr = np.unique(np.asarray(seam_edges, dtype=np.int64), axis=0)
    else:
        seam_edge_arr = np.zeros((0, 2), dtype=np.int64)

    _LOGGER.debug(
        "Cylindrical unwrap: axis=%s, C=%.4g, split %d triangles, %d duplicates",
        coords.axis, circumference, int(crossing.size), len(arena),
    )

    return CylindricalResult(
        uv=uv,
        faces=new_faces,
        source_vertices=source_vertices,
        seam_vertices=np.sort(dup_sources),
        seam_edges=seam_edge_arr,
        circumference=float(circumference),
        axis=coords.axis,
        split_triangles=int(crossing.size),
    )
