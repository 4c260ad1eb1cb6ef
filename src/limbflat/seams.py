"""
Seam Planner Module
절개선(seam) 배치 - 튜브 형태의 메쉬를 원판 위상으로 만드는 절단 경로

Default heuristic: every vertex whose angle about the limb axis lies inside a
tolerance window around a reference angle (the "back" of the limb) is a seam
candidate. A best-effort edge path through those candidates is returned for
the LSCM cutter. `method="shortest_path"` instead runs an angle-weighted
Dijkstra between the boundary loops.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence
import logging
import math

import numpy as np
from scipy import sparse
from scipy.sparse.csgraph import dijkstra

from .geometry_utils import cylindrical_coordinates, wrap_angle
from .mesh_data import MeshData
from .runtime_defaults import DEFAULTS
from .topology import BoundaryLoop, TopologyReport, analyze_mesh

_LOGGER = logging.getLogger(__name__)

SEAM_METHODS = ("angle_window", "shortest_path")


@dataclass(frozen=True)
class SeamPlacement:
    """
    절개선 결과

    Attributes:
        vertices: (K,) 절개선 정점 (정렬, 중복 없음) - 항상 채워짐
        edges: (E, 2) 절개 엣지 경로 (best-effort, 비어 있을 수 있음)
        score: 경로 정점의 기준 각도 대비 평균 편차 (rad, 낮을수록 좋음). 경로 없으면 None
        method: 'angle_window' | 'shortest_path'
        axis: 사용한 축 ('x' | 'y' | 'z')
        reference_angle: 기준 각도 (rad)
        tolerance: 각도 창 반폭 (rad)
    """
    vertices: np.ndarray
    edges: np.ndarray
    score: Optional[float]
    method: str
    axis: str
    reference_angle: float
    tolerance: float

    @property
    def has_edges(self) -> bool:
        return int(self.edges.shape[0]) > 0

    def length(self, vertices: np.ndarray) -> float:
        """절개 엣지 총 길이 (mesh 단위)"""
        if not self.has_edges:
            return 0.0
        pts = np.asarray(vertices, dtype=np.float64)
        seg = pts[self.edges[:, 1]] - pts[self.edges[:, 0]]
        return float(np.linalg.norm(seg, axis=1).sum())

    def to_dict(self) -> dict:
        return {
            "method": self.method,
            "axis": self.axis,
            "reference_angle": float(self.reference_angle),
            "tolerance": float(self.tolerance),
            "seam_vertices": [int(v) for v in self.vertices],
            "seam_edges": [[int(a), int(b)] for a, b in self.edges],
            "score": None if self.score is None else float(self.score),
        }


def unique_edges(faces: np.ndarray) -> np.ndarray:
    """(E, 2) 정렬된 무방향 엣지 (min, max)"""
    f = np.asarray(faces, dtype=np.int64)
    if f.size == 0:
        return np.zeros((0, 2), dtype=np.int64)
    e = np.concatenate([f[:, [0, 1]], f[:, [1, 2]], f[:, [2, 0]]], axis=0)
    e.sort(axis=1)
    return np.unique(e, axis=0)


def _shortest_path(
    n_vertices: int,
    edges: np.ndarray,
    weights: np.ndarray,
    sources: Sequence[int],
    targets: Sequence[int],
) -> List[int]:
    """여러 시작점 -> 가장 가까운 목표점까지의 최단 정점 경로 (없으면 빈 리스트)"""
    if len(sources) == 0 or len(targets) == 0 or edges.shape[0] == 0:
        return []

    graph = sparse.coo_matrix(
        (weights, (edges[:, 0], edges[:, 1])),
        shape=(n_vertices, n_vertices),
    ).tocsr()
    dist, pred, _ = dijkstra(
        graph,
        directed=False,
        indices=np.asarray(sources, dtype=np.int64),
        return_predecessors=True,
        min_only=True,
    )

    targets = np.asarray(targets, dtype=np.int64)
    target_dist = dist[targets]
    finite = np.isfinite(target_dist)
    if not np.any(finite):
        return []
    end = int(targets[finite][int(np.argmin(target_dist[finite]))])

    path = [end]
    while pred[path[-1]] >= 0:
        path.append(int(pred[path[-1]]))
        if len(path) > n_vertices:
            # predecessor cycle, cannot happen for a valid dijkstra result
            return []
    path.reverse()
    return path


def _seam_terminals(
    heights: np.ndarray,
    loops: Sequence[BoundaryLoop],
    allowed: np.ndarray,
) -> tuple[List[int], List[int]]:
    """
    절개 경로의 시작/끝 후보 정점.

    - 경계 루프 2개 이상: 가장 낮은 루프 -> 가장 높은 루프
    - 경계 루프 1개 (양말 형태): 루프 -> 루프에서 높이가 가장 먼 정점
    - 닫힌 메쉬: 가장 낮은 정점 -> 가장 높은 정점
    """
    allowed_idx = np.flatnonzero(allowed)
    if allowed_idx.size == 0:
        return [], []

    usable = []
    for loop in loops:
        verts = np.asarray(loop.vertices, dtype=np.int64)
        hit = verts[allowed[verts]]
        if hit.size:
            usable.append((float(np.mean(heights[verts])), hit))
    usable.sort(key=lambda item: item[0])

    if len(usable) >= 2:
        return [int(v) for v in usable[0][1]], [int(v) for v in usable[-1][1]]

    if len(usable) == 1:
        loop_height, hit = usable[0]
        far = allowed_idx[int(np.argmax(np.abs(heights[allowed_idx] - loop_height)))]
        return [int(v) for v in hit], [int(far)]

    low = allowed_idx[int(np.argmin(heights[allowed_idx]))]
    high = allowed_idx[int(np.argmax(heights[allowed_idx]))]
    return [int(low)], [int(high)]


def _path_edges(path: Sequence[int]) -> np.ndarray:
    if len(path) < 2:
        return np.zeros((0, 2), dtype=np.int64)
    p = np.asarray(path, dtype=np.int64)
    return np.stack([p[:-1], p[1:]], axis=1)


def plan_seam(
    mesh: MeshData,
    topology: Optional[TopologyReport] = None,
    *,
    method: str = "angle_window",
    axis: str = "auto",
    reference_angle: float = math.pi,
    tolerance: Optional[float] = None,
    angle_weight: float = 4.0,
) -> SeamPlacement:
    """
    절개선 계획

    Args:
        mesh: 입력 메쉬
        topology: analyze_mesh 결과 (없으면 새로 계산)
        method: 'angle_window' (기본 휴리스틱) | 'shortest_path'
        axis: 'auto' | 'x' | 'y' | 'z'
        reference_angle: 절개 기준 각도 (rad, 기본 pi = 사지 뒤쪽)
        tolerance: 각도 창 반폭 (rad). None이면 DEFAULTS.seam_angle_tolerance
        angle_weight: shortest_path에서 각도 편차 가중치

    Returns:
        SeamPlacement
    """
    m = str(method or "angle_window").strip().lower()
    if m not in SEAM_METHODS:
        raise ValueError(f"Unsupported seam method: {method}")

    if topology is None:
        topology = analyze_mesh(mesh)
    tol = float(DEFAULTS.seam_angle_tolerance if tolerance is None else tolerance)
    ref = float(reference_angle)

    vertices = np.asarray(mesh.vertices, dtype=np.float64)
    n = int(vertices.shape[0])
    coords = cylindrical_coordinates(vertices, axis)
    deviation = np.abs(wrap_angle(coords.theta - ref))
    in_window = deviation < tol

    edges = unique_edges(mesh.faces)
    lengths = np.linalg.norm(vertices[edges[:, 1]] - vertices[edges[:, 0]], axis=1)

    def weighted_route() -> List[int]:
        mean_dev = 0.5 * (deviation[edges[:, 0]] + deviation[edges[:, 1]])
        weights = lengths * (1.0 + float(angle_weight) * mean_dev / math.pi)
        allowed = np.ones(n, dtype=bool)
        sources, targets = _seam_terminals(coords.height, topology.boundary_loops, allowed)
        return _shortest_path(n, edges, weights, sources, targets)

    def routed(path: List[int]) -> SeamPlacement:
        return SeamPlacement(
            vertices=np.unique(np.asarray(path, dtype=np.int64)),
            edges=_path_edges(path),
            score=float(np.mean(deviation[path])),
            method="shortest_path",
            axis=coords.axis,
            reference_angle=ref,
            tolerance=tol,
        )

    if m == "shortest_path":
        path = weighted_route()
        if len(path) >= 2:
            return routed(path)
        _LOGGER.warning("Shortest-path seam found no route; falling back to the angle window")

    seam_vertices = np.flatnonzero(in_window).astype(np.int64)

    # best-effort cut path inside the candidate strip
    inside = in_window[edges[:, 0]] & in_window[edges[:, 1]]
    sources, targets = _seam_terminals(coords.height, topology.boundary_loops, in_window)
    path = _shortest_path(n, edges[inside], lengths[inside], sources, targets)
    if len(path) < 2:
        path = []
        if m == "angle_window" and not topology.is_disk:
            # without a cut edge the surface stays closed or tubular
            route = weighted_route()
            if len(route) >= 2:
                _LOGGER.info(
                    "Seam candidates (%d vertices) do not form a cut path; using the weighted shortest path",
                    int(seam_vertices.size),
                )
                return routed(route)
        if seam_vertices.size:
            _LOGGER.info(
                "Seam candidates (%d vertices) do not form a connected cut path",
                int(seam_vertices.size),
            )

    return SeamPlacement(
        vertices=seam_vertices,
        edges=_path_edges(path),
        score=float(np.mean(deviation[path])) if path else None,
        method="angle_window",
        axis=coords.axis,
        reference_angle=ref,
        tolerance=tol,
    )
