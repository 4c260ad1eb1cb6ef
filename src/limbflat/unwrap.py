"""
Unwrap pipeline
mesh -> topology -> seam -> {LSCM | cylindrical} -> normalize -> validate

`unwrap_mesh` is the single entry point; `unwrap_hybrid` runs several
independent candidates (optionally on a caller supplied executor) and keeps
the one with the best quality score.
"""

from __future__ import annotations

from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence
import logging
import time

import numpy as np

from .cylindrical import cylindrical_unwrap, is_roughly_cylindrical
from .layout import FlattenedPattern, normalize_layout
from .lscm import lscm_parameterize, seam_edges_in_cut
from .mesh_data import MeshData, ensure_valid_mesh
from .seams import SeamPlacement, plan_seam
from .topology import TopologyReport, analyze_mesh
from .validation import (
    DEFAULT_THRESHOLDS,
    DistortionReport,
    QualityThresholds,
    ValidationResult,
    pattern_distortion,
    validate_pattern,
)

_LOGGER = logging.getLogger(__name__)

UNWRAP_METHODS = ("lscm", "cylindrical", "auto", "hybrid")
HYBRID_CANDIDATES = ("lscm", "lscm_shortest_path", "cylindrical")


@dataclass
class UnwrapResult:
    pattern: FlattenedPattern
    distortion: DistortionReport
    validation: ValidationResult
    topology: TopologyReport
    seam: Optional[SeamPlacement]
    method: str
    warnings: List[Warning] = field(default_factory=list)
    candidate_scores: Dict[str, float] = field(default_factory=dict)

    @property
    def quality_score(self) -> float:
        return float(self.validation.quality_score)

    def to_dict(self) -> dict:
        return {
            "method": self.method,
            "pattern": self.pattern.to_dict(),
            "distortion": self.distortion.to_dict(),
            "validation": self.validation.to_dict(),
            "topology": self.topology.to_dict(),
            "seam": None if self.seam is None else self.seam.to_dict(),
            "warnings": [str(w) for w in self.warnings],
            "candidate_scores": dict(self.candidate_scores),
        }


def _finish(
    mesh: MeshData,
    pattern: FlattenedPattern,
    topology: TopologyReport,
    seam: Optional[SeamPlacement],
    method: str,
    warnings: List[Warning],
    thresholds: QualityThresholds,
) -> UnwrapResult:
    distortion = pattern_distortion(mesh, pattern, thresholds)
    pattern = pattern.with_distortion(distortion.area)
    validation = validate_pattern(pattern, distortion, thresholds=thresholds)
    return UnwrapResult(
        pattern=pattern,
        distortion=distortion,
        validation=validation,
        topology=topology,
        seam=seam,
        method=method,
        warnings=list(topology.warnings) + list(warnings),
    )


def _run_lscm(
    mesh: MeshData,
    topology: TopologyReport,
    *,
    seam_method: str,
    axis: str,
    scale_mode: str,
    max_iterations: Optional[int],
    tolerance: Optional[float],
    deadline: Optional[float],
    thresholds: QualityThresholds,
) -> UnwrapResult:
    # a disk is already simply connected
    seam = None if topology.is_disk else plan_seam(mesh, topology, method=seam_method, axis=axis)
    result = lscm_parameterize(
        mesh,
        seam,
        max_iterations=max_iterations,
        tolerance=tolerance,
        deadline=deadline,
    )
    cut = result.cut
    pattern = normalize_layout(
        result.uv,
        cut.faces,
        cut.vertices,
        source_vertices=cut.source_vertices,
        seam_vertices=np.zeros(0, dtype=np.int64) if seam is None else seam.vertices,
        seam_edges=seam_edges_in_cut(cut, None if seam is None else seam.edges),
        unit=mesh.unit,
        scale_mode=scale_mode,
        orient="min_area",
        method="lscm",
        degraded=result.degraded,
    )
    return _finish(mesh, pattern, topology, seam, "lscm", result.warnings, thresholds)


def _run_cylindrical(
    mesh: MeshData,
    topology: TopologyReport,
    *,
    axis: str,
    split_ratio: Optional[float],
    thresholds: QualityThresholds,
) -> UnwrapResult:
    result = cylindrical_unwrap(mesh, axis=axis, split_ratio=split_ratio)
    points3d = np.asarray(mesh.vertices, dtype=np.float64)[result.source_vertices]
    pattern = normalize_layout(
        result.uv,
        result.faces,
        points3d,
        source_vertices=result.source_vertices,
        seam_vertices=result.seam_vertices,
        seam_edges=result.seam_edges,
        unit=mesh.unit,
        scale_mode="none",
        method="cylindrical",
    )
    return _finish(mesh, pattern, topology, None, "cylindrical", [], thresholds)


def unwrap_mesh(
    mesh: MeshData,
    method: str = "auto",
    *,
    axis: str = "auto",
    seam_method: str = "angle_window",
    scale_mode: str = "area",
    max_iterations: Optional[int] = None,
    tolerance: Optional[float] = None,
    time_limit: Optional[float] = None,
    split_ratio: Optional[float] = None,
    thresholds: QualityThresholds = DEFAULT_THRESHOLDS,
    executor: Optional[Executor] = None,
) -> UnwrapResult:
    """
    메쉬를 2D 재단 패턴으로 전개합니다.

    Args:
        mesh: 입력 메쉬 (수정하지 않음)
        method: 'lscm' | 'cylindrical' | 'auto' | 'hybrid'
        axis: 원통/seam 축 ('auto' | 'x' | 'y' | 'z')
        seam_method: 'angle_window' | 'shortest_path'
        scale_mode: LSCM 스케일 복원 ('area' 기본, 2D 총면적 = 3D 표면적 | 'extent' | 'none')
        max_iterations / tolerance: CG 설정 (None이면 DEFAULTS)
        time_limit: LSCM 풀이 시간 제한 (초)
        split_ratio: 원통 seam 분할 비율
        thresholds: 품질 판정 기준
        executor: hybrid 후보 실행기 (선택)

    Raises:
        InputError: 잘못된 입력 메쉬
        ValueError: 지원하지 않는 method
    """
    m = str(method or "auto").strip().lower()
    if m not in UNWRAP_METHODS:
        raise ValueError(f"Unsupported unwrap method: {method}")
    ensure_valid_mesh(mesh)

    if m == "hybrid":
        return unwrap_hybrid(
            mesh,
            axis=axis,
            scale_mode=scale_mode,
            max_iterations=max_iterations,
            tolerance=tolerance,
            time_limit=time_limit,
            split_ratio=split_ratio,
            thresholds=thresholds,
            executor=executor,
        )

    topology = analyze_mesh(mesh)
    deadline = None if time_limit is None else time.monotonic() + float(time_limit)

    def run_lscm() -> UnwrapResult:
        return _run_lscm(
            mesh, topology,
            seam_method=seam_method, axis=axis, scale_mode=scale_mode,
            max_iterations=max_iterations, tolerance=tolerance, deadline=deadline,
            thresholds=thresholds,
        )

    def run_cylindrical() -> UnwrapResult:
        return _run_cylindrical(mesh, topology, axis=axis, split_ratio=split_ratio, thresholds=thresholds)

    if m == "lscm":
        return run_lscm()
    if m == "cylindrical":
        return run_cylindrical()

    if is_roughly_cylindrical(mesh, axis):
        _LOGGER.info("Auto unwrap: mesh is roughly cylindrical, using cylindrical projection")
        return run_cylindrical()

    result = run_lscm()
    if result.validation.is_valid:
        return result

    _LOGGER.warning(
        "Auto unwrap: LSCM pattern is invalid (score %.3f); falling back to cylindrical",
        result.quality_score,
    )
    fallback = run_cylindrical()
    fallback.warnings += [w for w in result.warnings if w not in topology.warnings]
    fallback.candidate_scores = {"lscm": result.quality_score, "cylindrical": fallback.quality_score}
    return fallback


def unwrap_hybrid(
    mesh: MeshData,
    *,
    candidates: Sequence[str] = HYBRID_CANDIDATES,
    axis: str = "auto",
    scale_mode: str = "area",
    max_iterations: Optional[int] = None,
    tolerance: Optional[float] = None,
    time_limit: Optional[float] = None,
    split_ratio: Optional[float] = None,
    thresholds: QualityThresholds = DEFAULT_THRESHOLDS,
    executor: Optional[Executor] = None,
) -> UnwrapResult:
    """
    여러 전개 후보를 독립적으로 실행하고 품질 점수가 가장 높은 결과를 반환합니다.

    후보: 'lscm' | 'lscm_shortest_path' | 'cylindrical'.
    실패한 후보는 로그 후 건너뛰며, 모두 실패하면 첫 번째 예외를 다시 올립니다.
    """
    ensure_valid_mesh(mesh)
    topology = analyze_mesh(mesh)
    deadline = None if time_limit is None else time.monotonic() + float(time_limit)

    def make_job(name: str) -> Callable[[], UnwrapResult]:
        if name == "cylindrical":
            return lambda: _run_cylindrical(
                mesh, topology, axis=axis, split_ratio=split_ratio, thresholds=thresholds,
            )
        if name in ("lscm", "lscm_shortest_path"):
            seam_method = "shortest_path" if name == "lscm_shortest_path" else "angle_window"
            return lambda: _run_lscm(
                mesh, topology,
                seam_method=seam_method, axis=axis, scale_mode=scale_mode,
                max_iterations=max_iterations, tolerance=tolerance, deadline=deadline,
                thresholds=thresholds,
            )
        raise ValueError(f"Unsupported hybrid candidate: {name}")

    names = [str(c).strip().lower() for c in candidates]
    if not names:
        raise ValueError("unwrap_hybrid needs at least one candidate")
    jobs = [make_job(name) for name in names]

    if executor is not None:
        futures = [executor.submit(job) for job in jobs]
        outcomes = []
        for future in futures:
            try:
                outcomes.append((future.result(), None))
            except Exception as exc:
                outcomes.append((None, exc))
    else:
        outcomes = []
        for job in jobs:
            try:
                outcomes.append((job(), None))
            except Exception as exc:
                outcomes.append((None, exc))

    best: Optional[UnwrapResult] = None
    first_error: Optional[BaseException] = None
    scores: Dict[str, float] = {}
    for name, (result, error) in zip(names, outcomes):
        if error is not None:
            _LOGGER.warning("Hybrid candidate %s failed", name, exc_info=error)
            if first_error is None:
                first_error = error
            continue
        scores[name] = result.quality_score
        if best is None or result.quality_score > best.quality_score:
            best = result

    if best is None:
        if first_error is None:
            raise RuntimeError("Hybrid unwrap produced no candidate result")
        raise first_error

    best.candidate_scores = scores
    _LOGGER.info(
        "Hybrid unwrap: %s",
        ", ".join(f"{k}={v:.3f}" for k, v in scores.items()),
    )
    return best
