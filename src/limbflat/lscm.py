"""
LSCM Module
Least Squares Conformal Maps - 절개선을 따라 자른 뒤 등각 에너지 최소화

Pipeline per call:
    1. seam 엣지를 따라 정점을 복제해 메쉬를 자름 (입력 배열은 수정하지 않음)
    2. 멀리 떨어진 두 정점을 (0, 0), (d, 0)에 고정
    3. [[L, -S/2], [S/2, L]] 2N x 2N 시스템 조립 (penalty 고정)
    4. Jacobi preconditioned CG로 풀이 (warm start: seam이 있으면 축 둘레로 펼친
       좌표, 없으면 PCA 투영)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import logging

import numpy as np
from scipy import sparse
from scipy.sparse.csgraph import breadth_first_order

from .errors import ConvergenceWarning
from .geometry_utils import (
    align_uv_to_anchors,
    cylindrical_coordinates,
    reference_basis,
    signed_areas_2d,
    wrap_angle,
)
from .logging_utils import log_once
from .mesh_data import MeshData, ensure_valid_mesh
from .runtime_defaults import DEFAULTS
from .seams import SeamPlacement, unique_edges
from .sparse_solver import CGResult, conjugate_gradient
from .topology import boundary_edges, build_edge_map

_LOGGER = logging.getLogger(__name__)


@dataclass
class CutMesh:
    """
    절개된 메쉬 (정점 복제 후)

    Attributes:
        vertices: (K, 3) 새 정점 배열
        faces: (M, 3) 새 인덱스 (삼각형 순서는 입력과 동일)
        source_vertices: (K,) 새 정점 -> 원본 정점
    """
    vertices: np.ndarray
    faces: np.ndarray
    source_vertices: np.ndarray

    @property
    def n_vertices(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def split_vertices(self) -> np.ndarray:
        """두 개 이상으로 복제된 원본 정점 (정렬)"""
        counts = np.bincount(self.source_vertices)
        return np.flatnonzero(counts > 1).astype(np.int64)


def cut_mesh_along_seam(
    vertices: np.ndarray,
    faces: np.ndarray,
    seam_edges: Optional[np.ndarray] = None,
) -> CutMesh:
    """
    seam 엣지를 따라 메쉬를 자릅니다.

    각 정점 주변의 삼각형 코너를 seam이 아닌 공유 엣지로 이어지는 부채꼴(fan)로
    묶고, (원본 정점, fan) 키마다 새 정점을 하나씩 만듭니다. seam이 없으면
    연결 구조는 그대로이고 삼각형에 쓰이지 않는 정점만 빠집니다.
    """
    vertices = np.asarray(vertices, dtype=np.float64)
    faces = np.asarray(faces, dtype=np.int64)
    m = int(faces.shape[0])

    seam: set[Tuple[int, int]] = set()
    if seam_edges is not None:
        for a, b in np.asarray(seam_edges, dtype=np.int64).reshape(-1, 2):
            a, b = int(a), int(b)
            seam.add((a, b) if a < b else (b, a))

    parent = np.arange(3 * m, dtype=np.int64)

    def find(x: int) -> int:
        x = int(x)
        while parent[x] != x:
            parent[x] = parent[parent[x]]
            x = int(parent[x])
        return x

    def union(a_idx: int, b_idx: int) -> None:
        ra = find(a_idx)
        rb = find(b_idx)
        if ra != rb:
            parent[max(ra, rb)] = min(ra, rb)

    def corner(fi: int, v: int) -> int:
        face = faces[fi]
        for k in range(3):
            if int(face[k]) == v:
                return 3 * fi + k
        raise ValueError(f"vertex {v} is not a corner of triangle {fi}")

    edge_map = build_edge_map(faces)
    for (u, v), tris in edge_map.items():
        # seam, boundary and non-manifold edges all separate fans
        if len(tris) != 2 or (u, v) in seam:
            continue
        t1, t2 = int(tris[0]), int(tris[1])
        union(corner(t1, u), corner(t2, u))
        union(corner(t1, v), corner(t2, v))

    arena: Dict[Tuple[int, int], int] = {}
    source: List[int] = []
    new_faces = np.empty((m, 3), dtype=np.int64)
    for fi in range(m):
        for k in range(3):
            orig = int(faces[fi, k])
            key = (orig, find(3 * fi + k))
            idx = arena.get(key)
            if idx is None:
                idx = len(source)
                arena[key] = idx
                source.append(orig)
            new_faces[fi, k] = idx

    source_vertices = np.asarray(source, dtype=np.int64)
    return CutMesh(
        vertices=vertices[source_vertices].copy(),
        faces=new_faces,
        source_vertices=source_vertices,
    )


def seam_edges_in_cut(cut: CutMesh, seam_edges: Optional[np.ndarray]) -> np.ndarray:
    """원본 seam 엣지를 절개 메쉬 인덱스로 변환 (양쪽 면 모두 포함)"""
    if seam_edges is None or len(seam_edges) == 0:
        return np.zeros((0, 2), dtype=np.int64)
    seam = {(min(int(a), int(b)), max(int(a), int(b))) for a, b in np.asarray(seam_edges).reshape(-1, 2)}
    src = cut.source_vertices
    out: set[Tuple[int, int]] = set()
    for face in cut.faces:
        for k in range(3):
            a, b = int(face[k]), int(face[(k + 1) % 3])
            sa, sb = int(src[a]), int(src[b])
            if (min(sa, sb), max(sa, sb)) in seam:
                out.add((min(a, b), max(a, b)))
    if not out:
        return np.zeros((0, 2), dtype=np.int64)
    return np.asarray(sorted(out), dtype=np.int64)


def select_pinned_vertices(vertices: np.ndarray, faces: np.ndarray, seed: int = 0) -> np.ndarray:
    """
    고정할 두 정점 선택 (대략적인 지름 쌍).

    seed에서 가장 먼 정점 p0, 그 다음 p0에서 가장 먼 정점 p1.
    경계 정점이 2개 이상이면 경계 정점 중에서 고릅니다.
    """
    verts = np.asarray(vertices, dtype=np.float64)
    n = int(verts.shape[0])
    if n < 2:
        return np.array([0, 0], dtype=np.int64)

    bnd = boundary_edges(build_edge_map(faces))
    candidates = np.unique(np.asarray(bnd, dtype=np.int64).reshape(-1))
    if candidates.size < 2:
        candidates = np.arange(n, dtype=np.int64)

    seed = int(seed) if 0 <= int(seed) < n else 0
    d0 = np.linalg.norm(verts[candidates] - verts[seed], axis=1)
    p0 = int(candidates[int(np.argmax(d0))])
    d1 = np.linalg.norm(verts[candidates] - verts[p0], axis=1)
    p1 = int(candidates[int(np.argmax(d1))])
    if p1 == p0:
        p1 = int(candidates[0]) if int(candidates[0]) != p0 else int(candidates[1])
    return np.array([p0, p1], dtype=np.int64)


def build_lscm_system(vertices: np.ndarray, faces: np.ndarray) -> sparse.csr_matrix:
    """
    등각 에너지의 2N x 2N 대칭 행렬 [[L, -S/2], [S/2, L]] (고정점 제외)

    L: 코탄젠트 라플라시안 (엣지 가중치 1/2 (cot a + cot b))
    S: 삼각형 방향 엣지 (i -> j)마다 S[i, j] += 1, S[j, i] -= 1
    """
    verts = np.asarray(vertices, dtype=np.float64)
    faces = np.asarray(faces, dtype=np.int64)
    n = int(verts.shape[0])

    l_rows, l_cols, l_vals = [], [], []
    s_rows, s_cols, s_vals = [], [], []
    for k in range(3):
        i = faces[:, k]
        j = faces[:, (k + 1) % 3]
        o = faces[:, (k + 2) % 3]

        # cotangent of the angle opposite edge (i, j)
        e1 = verts[i] - verts[o]
        e2 = verts[j] - verts[o]
        cross = np.linalg.norm(np.cross(e1, e2), axis=1)
        dot = np.einsum("ij,ij->i", e1, e2)
        cot = np.zeros_like(dot)
        ok = cross > 1e-300
        cot[ok] = dot[ok] / cross[ok]
        w = 0.5 * cot

        l_rows.extend([i, j, i, j])
        l_cols.extend([j, i, i, j])
        l_vals.extend([-w, -w, w, w])

        s_rows.extend([i, j])
        s_cols.extend([j, i])
        s_vals.extend([np.ones_like(w), -np.ones_like(w)])

    L = sparse.coo_matrix(
        (np.concatenate(l_vals), (np.concatenate(l_rows), np.concatenate(l_cols))),
        shape=(n, n),
    ).tocsr()
    S = sparse.coo_matrix(
        (np.concatenate(s_vals), (np.concatenate(s_rows), np.concatenate(s_cols))),
        shape=(n, n),
    ).tocsr()

    return sparse.bmat([[L, -0.5 * S], [0.5 * S, L]], format="csr")


@dataclass
class LSCMResult:
    """
    Attributes:
        uv: (K, 2) 절개 메쉬 정점별 파라미터 좌표 (mesh 단위 스케일)
        cut: 절개된 메쉬
        pins: (2,) 고정 정점 (cut 인덱스)
        pin_targets: (2, 2) 고정 위치 [(0, 0), (d, 0)]
        solver: CG 결과
        degraded: 수렴 실패 / 비유한 해 폴백
        warnings: ConvergenceWarning 목록
    """
    uv: np.ndarray
    cut: CutMesh
    pins: np.ndarray
    pin_targets: np.ndarray
    solver: CGResult
    degraded: bool = False
    warnings: List[Warning] = field(default_factory=list)

    @property
    def faces(self) -> np.ndarray:
        return self.cut.faces

    @property
    def source_vertices(self) -> np.ndarray:
        return self.cut.source_vertices


def _warm_start(vertices: np.ndarray, a: int, b: int, dist: float) -> np.ndarray:
    basis = reference_basis(vertices)
    projected = (vertices - vertices.mean(axis=0)) @ basis.T
    return align_uv_to_anchors(projected, a, b, dist)


def unrolled_warm_start(cut: CutMesh, axis: str = "auto") -> np.ndarray:
    """
    절개된 튜브를 축 둘레로 펼친 초기 UV (mesh 단위, 정렬 전)

    각도는 절개 메쉬의 BFS 트리를 따라 누적하므로 seam 양쪽의 복제 정점은
    서로 다른 theta 가지(약 2pi 차이)에 놓입니다. 결과는 삼각형이 반시계
    방향이 되도록 좌우를 맞춥니다.
    """
    n = cut.n_vertices
    if n == 0:
        return np.zeros((0, 2), dtype=np.float64)

    # axis frame from the uncut surface; duplicates would pull the centroid toward the seam
    _, first, inverse = np.unique(cut.source_vertices, return_index=True, return_inverse=True)
    coords = cylindrical_coordinates(cut.vertices[first], axis)
    inverse = inverse.reshape(-1)
    theta = coords.theta[inverse]
    height = coords.height[inverse]
    edges = unique_edges(cut.faces)
    graph = sparse.coo_matrix(
        (np.ones(edges.shape[0], dtype=np.float64), (edges[:, 0], edges[:, 1])),
        shape=(n, n),
    ).tocsr()

    unrolled = theta.copy()
    seen = np.zeros(n, dtype=bool)
    for start in range(n):
        if seen[start]:
            continue
        order, pred = breadth_first_order(graph, start, directed=False, return_predecessors=True)
        seen[order] = True
        for v in order[1:]:
            p = pred[v]
            unrolled[v] = unrolled[p] + float(wrap_angle(theta[v] - theta[p]))

    radius = float(np.mean(coords.radius))
    if not np.isfinite(radius) or radius < 1e-12:
        radius = 1.0
    uv = np.stack([radius * unrolled, height], axis=1)
    if float(np.sum(signed_areas_2d(uv, cut.faces))) < 0.0:
        uv[:, 0] *= -1.0
    return uv


def lscm_parameterize(
    mesh: MeshData,
    seam: Optional[SeamPlacement] = None,
    *,
    max_iterations: Optional[int] = None,
    tolerance: Optional[float] = None,
    deadline: Optional[float] = None,
    pin_penalty: Optional[float] = None,
    preconditioner: str = "jacobi",
) -> LSCMResult:
    """
    LSCM 파라미터화

    Args:
        mesh: 입력 메쉬 (수정하지 않음)
        seam: plan_seam 결과. None이거나 엣지가 없으면 자르지 않음
        max_iterations: CG 반복 상한 (None이면 DEFAULTS)
        tolerance: CG 상대 잔차 허용치 (None이면 DEFAULTS)
        deadline: time.monotonic() 기준 종료 시각
        pin_penalty: 고정 penalty 배수 (평균 |대각| 에 곱함)
        preconditioner: 'jacobi' | 'none'

    Returns:
        LSCMResult (수렴 실패 시 degraded=True, 예외 없음)

    Raises:
        InputError: 잘못된 입력 메쉬
    """
    ensure_valid_mesh(mesh)
    max_iter = int(DEFAULTS.lscm_max_iterations if max_iterations is None else max_iterations)
    tol = float(DEFAULTS.cg_tolerance if tolerance is None else tolerance)
    penalty_factor = float(DEFAULTS.pin_penalty if pin_penalty is None else pin_penalty)

    seam_edges = seam.edges if seam is not None and seam.has_edges else None
    cut = cut_mesh_along_seam(mesh.vertices, mesh.faces, seam_edges)
    n = cut.n_vertices

    pins = select_pinned_vertices(cut.vertices, cut.faces)
    a, b = int(pins[0]), int(pins[1])
    dist = float(np.linalg.norm(cut.vertices[b] - cut.vertices[a]))
    if not np.isfinite(dist) or dist < 1e-12:
        dist = 1.0
    targets = np.array([[0.0, 0.0], [dist, 0.0]], dtype=np.float64)

    Q = build_lscm_system(cut.vertices, cut.faces)
    diag_mean = float(np.mean(np.abs(Q.diagonal()))) if n else 0.0
    if not np.isfinite(diag_mean) or diag_mean <= 0.0:
        diag_mean = 1.0
    penalty = penalty_factor * diag_mean

    pinned_dofs = np.array([a, a + n, b, b + n], dtype=np.int64)
    penalty_diag = np.zeros(2 * n, dtype=np.float64)
    penalty_diag[pinned_dofs] = penalty
    A = (Q + sparse.diags(penalty_diag, format="csr")).tocsr()

    rhs = np.zeros(2 * n, dtype=np.float64)
    rhs[pinned_dofs] = penalty * np.array(
        [targets[0, 0], targets[0, 1], targets[1, 0], targets[1, 1]], dtype=np.float64
    )

    uv0 = None
    if seam_edges is not None:
        uv0 = align_uv_to_anchors(unrolled_warm_start(cut, seam.axis), a, b, dist)
        if not np.all(np.isfinite(uv0)):
            uv0 = None
    if uv0 is None:
        uv0 = _warm_start(cut.vertices, a, b, dist)
    x0 = np.concatenate([uv0[:, 0], uv0[:, 1]])

    cg = conjugate_gradient(
        A,
        rhs,
        x0=x0,
        tol=tol,
        max_iterations=max_iter,
        preconditioner=preconditioner,
        deadline=deadline,
    )

    warnings: List[Warning] = []
    degraded = False
    uv = np.stack([cg.x[:n], cg.x[n:]], axis=1)
    if not np.all(np.isfinite(uv)):
        degraded = True
        uv = uv0
        warnings.append(ConvergenceWarning("LSCM solution is not finite; using the warm-start projection"))
    elif not cg.converged:
        degraded = True
        warnings.append(
            ConvergenceWarning(
                f"LSCM solver stopped ({cg.reason}) after {cg.iterations} iterations, "
                f"relative residual {cg.residual_norm:.3e}"
            )
        )

    for w in warnings:
        log_once(_LOGGER, f"lscm:{cg.reason}", logging.WARNING, "LSCM degraded: %s", w)

    _LOGGER.debug(
        "LSCM: %d -> %d vertices after cut, pins=(%d, %d), d=%.4g, iterations=%d",
        mesh.n_vertices, n, a, b, dist, cg.iterations,
    )

    return LSCMResult(
        uv=uv,
        cut=cut,
        pins=pins,
        pin_targets=targets,
        solver=cg,
        degraded=degraded,
        warnings=warnings,
    )
