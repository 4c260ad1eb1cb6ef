"""
Mesh Data Module
메쉬 데이터 구조 및 입력 검증

File decoding (STL/OBJ/...) happens outside the core. Callers hand over
position/index buffers (or a trimesh object) and get a validated MeshData.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple
import numpy as np
import trimesh

from .errors import InputError

# Triangles smaller than this fraction of the squared bounding diagonal are degenerate.
DEGENERATE_AREA_RATIO = 1e-12


@dataclass
class MeshData:
    """
    3D 삼각형 메쉬 컨테이너 (호출자 소유, 읽기 전용으로 취급)

    Attributes:
        vertices: (N, 3) 정점 좌표 배열
        faces: (M, 3) 삼각형 인덱스 배열
        unit: 좌표 단위 ('mm', 'cm', 'm')
    """
    vertices: np.ndarray
    faces: np.ndarray
    unit: str = 'mm'

    # Computed properties cache
    _bounds: Optional[np.ndarray] = field(default=None, repr=False)
    _face_areas: Optional[np.ndarray] = field(default=None, repr=False)

    def __post_init__(self):
        """타입 변환 (원본 배열은 수정하지 않음)"""
        self.vertices = np.asarray(self.vertices, dtype=np.float64)
        self.faces = np.asarray(self.faces, dtype=np.int64)

    @property
    def n_vertices(self) -> int:
        """정점 개수"""
        return len(self.vertices)

    @property
    def n_faces(self) -> int:
        """면 개수"""
        return len(self.faces)

    @property
    def bounds(self) -> np.ndarray:
        """경계 박스 [[min_x, min_y, min_z], [max_x, max_y, max_z]]"""
        if self._bounds is None:
            if self.n_vertices == 0:
                self._bounds = np.zeros((2, 3), dtype=np.float64)
            else:
                self._bounds = np.array([
                    self.vertices.min(axis=0),
                    self.vertices.max(axis=0),
                ])
        return self._bounds

    @property
    def extents(self) -> np.ndarray:
        """경계 박스 크기 [x, y, z]"""
        return self.bounds[1] - self.bounds[0]

    @property
    def centroid(self) -> np.ndarray:
        """정점 평균 (면적 가중 아님)"""
        if self.n_vertices == 0:
            return np.zeros(3, dtype=np.float64)
        return self.vertices.mean(axis=0)

    def face_areas(self) -> np.ndarray:
        """(M,) 삼각형별 면적"""
        if self._face_areas is None:
            if self.n_faces == 0:
                self._face_areas = np.zeros((0,), dtype=np.float64)
            else:
                tri = self.vertices[self.faces[:, :3]]
                cross = np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])
                self._face_areas = np.linalg.norm(cross, axis=1) * 0.5
        return self._face_areas

    @property
    def surface_area(self) -> float:
        """총 표면적 (mesh 단위^2)"""
        return float(self.face_areas().sum())

    def to_trimesh(self) -> 'trimesh.Trimesh':
        """trimesh 객체로 변환 (병합/재정렬 없이)"""
        return trimesh.Trimesh(
            vertices=self.vertices,
            faces=self.faces,
            process=False,
        )

    @classmethod
    def from_trimesh(cls, mesh: 'trimesh.Trimesh', unit: str = 'mm') -> 'MeshData':
        """trimesh 객체에서 생성"""
        if not isinstance(mesh, trimesh.Trimesh):
            raise InputError(f"Expected trimesh.Trimesh, got {type(mesh).__name__}")
        return cls(
            vertices=np.array(mesh.vertices, dtype=np.float64),
            faces=np.array(mesh.faces, dtype=np.int64),
            unit=unit,
        )

    @classmethod
    def from_buffers(cls, positions, indices, unit: str = 'mm') -> 'MeshData':
        """
        플랫 버퍼에서 메쉬 생성 및 검증

        Args:
            positions: float[3N] 또는 (N, 3)
            indices: uint[3M] 또는 (M, 3). None이면 InputError (외부에서 weld 필요)
            unit: 좌표 단위

        Raises:
            InputError: 인덱스 버퍼 누락, 형식 오류, 퇴화 삼각형 등
        """
        if indices is None:
            raise InputError(
                "Mesh must be indexed; weld the triangle soup first (see weld_vertices)"
            )

        pos = np.asarray(positions, dtype=np.float64)
        if pos.ndim == 1:
            if pos.size % 3 != 0:
                raise InputError(f"Position buffer length {pos.size} is not a multiple of 3")
            pos = pos.reshape(-1, 3)
        idx = np.asarray(indices)
        if idx.ndim == 1:
            if idx.size % 3 != 0:
                raise InputError(f"Index buffer length {idx.size} is not a multiple of 3")
            idx = idx.reshape(-1, 3)

        mesh = cls(vertices=pos, faces=idx, unit=unit)
        ensure_valid_mesh(mesh)
        return mesh


def ensure_valid_mesh(mesh: MeshData) -> MeshData:
    """
    입력 메쉬가 계산 가능한 상태인지 검사합니다. 부분 결과 없이 즉시 거부합니다.

    Raises:
        InputError: 빈 메쉬, 잘못된 shape, 범위 밖 인덱스, NaN/Inf 좌표, 면적 0 삼각형
    """
    if mesh is None:
        raise InputError("mesh is None")

    vertices = np.asarray(mesh.vertices)
    faces = np.asarray(mesh.faces)

    if vertices.ndim != 2 or vertices.shape[1] != 3:
        raise InputError(f"Vertices must be shaped (N, 3), got {vertices.shape}")
    if faces.ndim != 2 or faces.shape[1] != 3:
        raise InputError(f"Faces must be shaped (M, 3), got {faces.shape}")
    if vertices.shape[0] == 0 or faces.shape[0] == 0:
        raise InputError("Mesh is empty")
    if not np.issubdtype(faces.dtype, np.integer):
        raise InputError(f"Face indices must be integers, got {faces.dtype}")
    if not np.isfinite(vertices).all():
        raise InputError("Vertex positions contain NaN/Inf")

    n = int(vertices.shape[0])
    if int(faces.min()) < 0 or int(faces.max()) >= n:
        raise InputError(f"Face index out of range [0, {n})")

    areas = mesh.face_areas()
    diag2 = float(np.sum(mesh.extents ** 2))
    threshold = DEGENERATE_AREA_RATIO * diag2 if diag2 > 0.0 else 0.0
    degenerate = np.flatnonzero(areas <= threshold)
    if degenerate.size:
        preview = ", ".join(str(int(i)) for i in degenerate[:5])
        raise InputError(
            f"{degenerate.size} degenerate zero-area triangle(s) (first: {preview})"
        )
    return mesh


def weld_vertices(positions, decimals: int = 6) -> Tuple[np.ndarray, np.ndarray]:
    """
    인덱스 없는 삼각형 수프를 반올림 후 정확히 일치하는 정점끼리 병합합니다.

    This is the pre-weld step callers run on non-indexed STL soups before
    handing the mesh to the core.

    Returns:
        (vertices (K, 3), faces (M, 3)) with first-occurrence vertex order.
    """
    pos = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
    if pos.shape[0] % 3 != 0:
        raise InputError("Triangle soup must contain 3 vertices per triangle")
    if pos.shape[0] == 0:
        return np.zeros((0, 3), dtype=np.float64), np.zeros((0, 3), dtype=np.int64)

    keys = np.round(pos, int(decimals))
    # -0.0 and 0.0 must hash to the same key
    keys = keys + 0.0
    _, first_idx, inverse = np.unique(keys, axis=0, return_index=True, return_inverse=True)
    inverse = np.asarray(inverse).reshape(-1)

    # np.unique sorts; renumber so vertices keep first-occurrence order
    order = np.argsort(first_idx, kind="stable")
    rank = np.empty_like(order)
    rank[order] = np.arange(order.size)

    vertices = pos[first_idx[order]]
    faces = rank[inverse].reshape(-1, 3).astype(np.int64, copy=False)
    return vertices, faces
