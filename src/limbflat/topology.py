"""
Topology Analyzer Module
메쉬 위상 분석 - 엣지 인접, 경계 루프, genus, 연결 컴포넌트

Problems found here (open boundary chains, non-manifold edges, several
components) are data-quality signals: they are collected as TopologyWarning
instances on the report and logged, never raised.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import logging

import numpy as np

from .errors import TopologyWarning
from .mesh_data import MeshData

_LOGGER = logging.getLogger(__name__)

EdgeKey = Tuple[int, int]


@dataclass(frozen=True)
class BoundaryLoop:
    """
    경계 루프 (순서 있는 정점 시퀀스, 시작점 반복 없음)

    Attributes:
        vertices: 루프를 따라가는 정점 인덱스
        closed: 시작점으로 돌아왔는지 (False = 열린 체인, 비정상 경계)
        length: 3D 둘레 길이 (mesh 단위, 닫힌 루프는 마지막->처음 엣지 포함)
    """
    vertices: Tuple[int, ...]
    closed: bool
    length: float = 0.0

    def __len__(self) -> int:
        return len(self.vertices)


@dataclass
class TopologyReport:
    """analyze_mesh 결과"""
    vertex_count: int
    edge_count: int
    face_count: int
    boundary_loops: List[BoundaryLoop]
    genus: int
    components: List[np.ndarray]
    non_manifold_edges: List[EdgeKey]
    boundary_edge_count: int = 0
    warnings: List[TopologyWarning] = field(default_factory=list)

    @property
    def euler_characteristic(self) -> int:
        return self.vertex_count - self.edge_count + self.face_count

    @property
    def n_boundaries(self) -> int:
        return len(self.boundary_loops)

    @property
    def n_components(self) -> int:
        return len(self.components)

    @property
    def is_closed(self) -> bool:
        return self.boundary_edge_count == 0

    @property
    def is_manifold(self) -> bool:
        return not self.non_manifold_edges

    @property
    def is_disk(self) -> bool:
        """펼침에 바로 쓸 수 있는 단순 연결 표면 (원판 위상)"""
        return self.n_components == 1 and self.genus == 0 and self.n_boundaries == 1

    @property
    def is_tube(self) -> bool:
        return self.n_components == 1 and self.genus == 0 and self.n_boundaries == 2

    def to_dict(self) -> dict:
        return {
            "vertex_count": self.vertex_count,
            "edge_count": self.edge_count,
            "face_count": self.face_count,
            "euler_characteristic": self.euler_characteristic,
            "genus": self.genus,
            "boundaries": [list(loop.vertices) for loop in self.boundary_loops],
            "open_boundaries": sum(1 for loop in self.boundary_loops if not loop.closed),
            "component_sizes": [int(c.size) for c in self.components],
            "non_manifold_edges": [list(e) for e in self.non_manifold_edges],
            "warnings": [str(w) for w in self.warnings],
        }


def build_edge_map(faces: np.ndarray) -> Dict[EdgeKey, List[int]]:
    """무방향 엣지 (min, max) -> 인접 삼각형 인덱스 목록. O(M)."""
    edges: Dict[EdgeKey, List[int]] = {}
    for fi, face in enumerate(np.asarray(faces, dtype=np.int64)):
        a, b, c = int(face[0]), int(face[1]), int(face[2])
        for u, v in ((a, b), (b, c), (c, a)):
            key = (u, v) if u < v else (v, u)
            tris = edges.get(key)
            if tris is None:
                edges[key] = [fi]
            else:
                tris.append(fi)
    return edges


def boundary_edges(edge_map: Dict[EdgeKey, List[int]]) -> List[EdgeKey]:
    return [e for e, tris in edge_map.items() if len(tris) == 1]


def non_manifold_edges(edge_map: Dict[EdgeKey, List[int]]) -> List[EdgeKey]:
    return [e for e, tris in edge_map.items() if len(tris) > 2]


def find_boundary_loops(
    edge_map: Dict[EdgeKey, List[int]],
    vertices: Optional[np.ndarray] = None,
) -> Tuple[List[BoundaryLoop], List[TopologyWarning]]:
    """
    경계 엣지(인접 삼각형 1개)를 루프로 연결합니다.

    각 루프는 방문하지 않은 이웃으로 탐욕적으로 걸어가며 추적하고, 시작점으로
    돌아오면 닫힌 루프입니다. 돌아오지 못하면 열린 체인으로 표시하고 경고를
    남깁니다.

    Returns:
        (loops, warnings)
    """
    adjacency: Dict[int, List[int]] = {}
    for a, b in boundary_edges(edge_map):
        adjacency.setdefault(a, []).append(b)
        adjacency.setdefault(b, []).append(a)

    loops: List[BoundaryLoop] = []
    warnings: List[TopologyWarning] = []
    visited: set[int] = set()
    pts = np.asarray(vertices, dtype=np.float64) if vertices is not None else None

    # chain ends first so an open chain is traced end to end
    starts = sorted(v for v, nbrs in adjacency.items() if len(nbrs) == 1)
    starts += sorted(v for v, nbrs in adjacency.items() if len(nbrs) != 1)

    for start in starts:
        if start in visited:
            continue

        loop = [start]
        visited.add(start)
        current = start
        closed = False
        while True:
            nxt = None
            for cand in adjacency[current]:
                if cand not in visited:
                    nxt = cand
                    break
            if nxt is None:
                closed = len(loop) >= 3 and start in adjacency[current]
                break
            visited.add(nxt)
            loop.append(nxt)
            current = nxt

        length = 0.0
        if pts is not None and len(loop) >= 2:
            seg = pts[loop[1:]] - pts[loop[:-1]]
            length = float(np.linalg.norm(seg, axis=1).sum())
            if closed:
                length += float(np.linalg.norm(pts[loop[0]] - pts[loop[-1]]))

        loops.append(BoundaryLoop(vertices=tuple(loop), closed=closed, length=length))
        if not closed:
            warnings.append(
                TopologyWarning(
                    f"Open boundary chain starting at vertex {start} "
                    f"({len(loop)} vertices) does not return to its start"
                )
            )
        elif any(len(adjacency[v]) > 2 for v in loop):
            warnings.append(
                TopologyWarning(f"Boundary loop starting at vertex {start} touches a branching boundary vertex")
            )

    return loops, warnings


def compute_genus(n_vertices: int, n_edges: int, n_faces: int, n_boundaries: int) -> int:
    """
    Euler 특성 X = V - E + F 로부터 genus 계산.

    X = 2 - 2g - b  =>  g = 1 - b/2 - X/2 (0 이상으로 clamp)
    """
    chi = int(n_vertices) - int(n_edges) + int(n_faces)
    genus = 1.0 - 0.5 * float(n_boundaries) - 0.5 * float(chi)
    return max(0, int(round(genus)))


def find_connected_components(n_vertices: int, faces: np.ndarray) -> List[np.ndarray]:
    """
    정점 인접 그래프에서 BFS로 연결 컴포넌트를 찾습니다.

    삼각형에 쓰이지 않는 정점은 어떤 컴포넌트에도 포함되지 않습니다.
    """
    faces = np.asarray(faces, dtype=np.int64)
    adjacency: List[List[int]] = [[] for _ in range(int(n_vertices))]
    used = np.zeros(int(n_vertices), dtype=bool)
    for face in faces:
        a, b, c = int(face[0]), int(face[1]), int(face[2])
        adjacency[a].extend((b, c))
        adjacency[b].extend((a, c))
        adjacency[c].extend((a, b))
        used[a] = used[b] = used[c] = True

    visited = np.zeros(int(n_vertices), dtype=bool)
    components: List[np.ndarray] = []
    for seed in np.flatnonzero(used):
        seed = int(seed)
        if visited[seed]:
            continue
        visited[seed] = True
        queue = deque([seed])
        component: List[int] = []
        while queue:
            v = queue.popleft()
            component.append(v)
            for nb in adjacency[v]:
                if not visited[nb]:
                    visited[nb] = True
                    queue.append(nb)
        components.append(np.asarray(sorted(component), dtype=np.int64))

    return components


def analyze_mesh(mesh: MeshData, edge_map: Optional[Dict[EdgeKey, List[int]]] = None) -> TopologyReport:
    """
    메쉬 위상 분석 (엣지 맵, 경계 루프, genus, 컴포넌트, non-manifold 엣지)

    Args:
        mesh: 검증된 입력 메쉬
        edge_map: 이미 계산된 build_edge_map 결과 (없으면 새로 계산)
    """
    faces = np.asarray(mesh.faces, dtype=np.int64)
    if edge_map is None:
        edge_map = build_edge_map(faces)

    loops, warnings = find_boundary_loops(edge_map, mesh.vertices)
    n_boundary_edges = sum(1 for tris in edge_map.values() if len(tris) == 1)

    bad_edges = non_manifold_edges(edge_map)
    if bad_edges:
        warnings.append(
            TopologyWarning(f"{len(bad_edges)} non-manifold edge(s) with more than two incident triangles")
        )

    components = find_connected_components(mesh.n_vertices, faces)
    if len(components) > 1:
        warnings.append(
            TopologyWarning(f"Mesh has {len(components)} connected components")
        )

    referenced = int(np.unique(faces.reshape(-1)).size) if faces.size else 0
    genus = compute_genus(referenced, len(edge_map), int(faces.shape[0]), len(loops))

    for w in warnings:
        _LOGGER.warning("Topology: %s", w)

    return TopologyReport(
        vertex_count=referenced,
        edge_count=len(edge_map),
        face_count=int(faces.shape[0]),
        boundary_loops=loops,
        genus=genus,
        components=components,
        non_manifold_edges=sorted(bad_edges),
        boundary_edge_count=n_boundary_edges,
        warnings=warnings,
    )
