import json
import math
import unittest
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest
import trimesh

import limbflat.unwrap as unwrap_module
from limbflat import (
    ConvergenceWarning,
    InputError,
    MeshData,
    QualityThresholds,
    unwrap_hybrid,
    unwrap_mesh,
)


def _make_tube(n_theta: int = 16, n_len: int = 5, radius: float = 10.0, height: float = 25.0) -> MeshData:
    theta = 2.0 * np.pi * (np.arange(n_theta) + 0.5) / n_theta
    z = np.linspace(0.0, height, n_len + 1)
    pts = np.array([[radius * np.cos(t), radius * np.sin(t), zz] for zz in z for t in theta])
    faces = []
    for i in range(n_len):
        for j in range(n_theta):
            a = i * n_theta + j
            b = i * n_theta + (j + 1) % n_theta
            c = a + n_theta
            d = b + n_theta
            faces.append([a, b, d])
            faces.append([a, d, c])
    return MeshData(vertices=pts, faces=np.asarray(faces), unit="mm")


def _make_plate(nx: int = 6, ny: int = 4, cell: float = 10.0) -> MeshData:
    xs, ys = np.meshgrid(np.arange(nx + 1) * cell, np.arange(ny + 1) * cell)
    vertices = np.stack([xs.ravel(), ys.ravel(), np.zeros(xs.size)], axis=1)
    faces = []
    for i in range(ny):
        for j in range(nx):
            a = i * (nx + 1) + j
            b = a + 1
            c = a + (nx + 1)
            d = c + 1
            faces.append([a, b, d])
            faces.append([a, d, c])
    return MeshData(vertices=vertices, faces=np.asarray(faces), unit="mm")


def _codes(result):
    return [issue.code for issue in result.validation.issues]


def _strip_width_cm(n_theta: int = 16, radius: float = 10.0) -> float:
    return 2.0 * n_theta * radius * math.sin(math.pi / n_theta) * 0.1


SOLVER = {"max_iterations": 5000, "tolerance": 1e-9}


class TestUnwrapMethods(unittest.TestCase):
    def setUp(self):
        self.tube = _make_tube()

    def test_cylindrical(self):
        result = unwrap_mesh(self.tube, "cylindrical")
        pattern = result.pattern

        self.assertEqual(result.method, "cylindrical")
        self.assertEqual(pattern.method, "cylindrical")
        self.assertIsNone(result.seam)
        self.assertTrue(result.topology.is_tube)
        self.assertAlmostEqual(pattern.width_cm, 2.0 * math.pi, delta=1e-3 * 2.0 * math.pi)
        self.assertAlmostEqual(pattern.height_cm, 2.5)
        self.assertEqual(pattern.seam_edges.shape, (5, 2))
        self.assertEqual(pattern.distortion.shape, (pattern.n_faces,))

        self.assertTrue(result.validation.is_valid)
        self.assertLess(result.distortion.avg_area, 0.01)
        # arc length vs chord changes the quad aspect slightly
        self.assertLess(result.distortion.max_angle, 0.5)
        self.assertEqual(result.validation.uv_islands, 1)
        self.assertGreater(result.quality_score, 0.9)

    def test_lscm_on_tube(self):
        result = unwrap_mesh(self.tube, "lscm", **SOLVER)
        pattern = result.pattern

        self.assertEqual(result.method, "lscm")
        self.assertIsNotNone(result.seam)
        self.assertFalse(pattern.degraded)
        self.assertEqual(pattern.n_vertices, self.tube.n_vertices + 6)
        self.assertGreater(pattern.seam_edges.shape[0], 0)

        # developable strip unrolls to a rectangle of the polygon perimeter
        self.assertAlmostEqual(pattern.width_cm, _strip_width_cm(), delta=1e-3 * _strip_width_cm())
        self.assertAlmostEqual(pattern.height_cm, 2.5, delta=2.5e-3)
        self.assertAlmostEqual(pattern.packing_efficiency, 1.0, delta=1e-3)
        self.assertLess(result.distortion.avg_area, 1e-3)
        self.assertTrue(result.validation.is_valid)
        self.assertEqual(result.warnings, [])

    def test_auto_picks_cylindrical_for_tubes(self):
        result = unwrap_mesh(self.tube)
        self.assertEqual(result.method, "cylindrical")
        self.assertEqual(result.candidate_scores, {})

    def test_auto_uses_lscm_without_seam_for_a_disk(self):
        plate = _make_plate()
        result = unwrap_mesh(plate, "auto", **SOLVER)

        self.assertEqual(result.method, "lscm")
        self.assertIsNone(result.seam)
        self.assertTrue(result.topology.is_disk)
        self.assertEqual(result.pattern.n_vertices, plate.n_vertices)
        self.assertAlmostEqual(result.pattern.width_cm, 6.0, places=4)
        self.assertAlmostEqual(result.pattern.height_cm, 4.0, places=4)
        self.assertAlmostEqual(result.quality_score, 1.0, places=3)

    def test_auto_falls_back_when_lscm_is_invalid(self):
        # every pattern fails this threshold
        strict = QualityThresholds(max_area_distortion=-1.0)
        result = unwrap_mesh(_make_plate(), "auto", thresholds=strict, **SOLVER)

        self.assertEqual(result.method, "cylindrical")
        self.assertEqual(set(result.candidate_scores), {"lscm", "cylindrical"})

    def test_time_limit_degrades_instead_of_failing(self):
        result = unwrap_mesh(self.tube, "lscm", time_limit=0.0)

        self.assertTrue(result.pattern.degraded)
        self.assertIn("DEGRADED_SOLVE", _codes(result))
        self.assertTrue(any(isinstance(w, ConvergenceWarning) for w in result.warnings))
        self.assertTrue(np.all(np.isfinite(result.pattern.vertices)))

    def test_input_mesh_is_untouched(self):
        vertices = self.tube.vertices.copy()
        faces = self.tube.faces.copy()
        unwrap_mesh(self.tube, "lscm", **SOLVER)
        unwrap_mesh(self.tube, "cylindrical")
        np.testing.assert_array_equal(self.tube.vertices, vertices)
        np.testing.assert_array_equal(self.tube.faces, faces)

    def test_result_is_json_serializable(self):
        result = unwrap_mesh(self.tube, "lscm", **SOLVER)
        data = json.loads(json.dumps(result.to_dict()))

        self.assertEqual(data["method"], "lscm")
        self.assertEqual(len(data["pattern"]["indices"]), 3 * self.tube.n_faces)
        self.assertIn("quality_score", data["validation"])
        self.assertIsNotNone(data["seam"])

    def test_stray_vertex_does_not_inflate_the_cylindrical_pattern(self):
        stray = MeshData(
            vertices=np.vstack([self.tube.vertices, [[0.0, 0.0, -100.0]]]),
            faces=self.tube.faces,
            unit="mm",
        )
        result = unwrap_mesh(stray, "cylindrical")
        pattern = result.pattern

        self.assertEqual(pattern.n_vertices, self.tube.n_vertices + 6)
        self.assertAlmostEqual(pattern.height_cm, 2.5)
        self.assertAlmostEqual(pattern.width_cm, 2.0 * math.pi, delta=1e-3 * 2.0 * math.pi)
        self.assertGreater(pattern.packing_efficiency, 0.9)
        self.assertNotIn("LOW_PACKING_EFFICIENCY", _codes(result))

    def test_closed_mesh_is_cut_for_lscm(self):
        sphere = MeshData.from_trimesh(trimesh.creation.icosphere(subdivisions=2, radius=50.0))
        result = unwrap_mesh(sphere, "lscm", **SOLVER)

        self.assertIsNotNone(result.seam)
        self.assertTrue(result.seam.has_edges)
        self.assertGreater(result.pattern.n_vertices, sphere.n_vertices)
        self.assertGreater(result.pattern.seam_edges.shape[0], 0)

    def test_default_iteration_cap_on_a_finer_tube(self):
        fine = _make_tube(n_theta=64, n_len=30, radius=10.0, height=90.0)
        result = unwrap_mesh(fine, "lscm")

        self.assertLess(result.distortion.avg_area, 0.01)
        self.assertTrue(result.validation.is_valid)
        self.assertGreater(result.quality_score, 0.8)


class TestHybrid(unittest.TestCase):
    def setUp(self):
        self.tube = _make_tube()

    def test_best_candidate_wins(self):
        with ThreadPoolExecutor(max_workers=3) as pool:
            result = unwrap_hybrid(self.tube, executor=pool, **SOLVER)

        self.assertEqual(set(result.candidate_scores), {"lscm", "lscm_shortest_path", "cylindrical"})
        self.assertAlmostEqual(result.quality_score, max(result.candidate_scores.values()))

    def test_sequential_matches_executor(self):
        sequential = unwrap_mesh(self.tube, "hybrid", **SOLVER)
        with ThreadPoolExecutor(max_workers=2) as pool:
            parallel = unwrap_mesh(self.tube, "hybrid", executor=pool, **SOLVER)

        self.assertEqual(sequential.method, parallel.method)
        for name, score in sequential.candidate_scores.items():
            self.assertAlmostEqual(score, parallel.candidate_scores[name])

    def test_failing_candidate_is_skipped(self):
        def boom(*args, **kwargs):
            raise RuntimeError("cylindrical failed")

        with pytest.MonkeyPatch.context() as mp:
            mp.setattr(unwrap_module, "_run_cylindrical", boom)
            result = unwrap_hybrid(self.tube, **SOLVER)

        self.assertEqual(result.method, "lscm")
        self.assertNotIn("cylindrical", result.candidate_scores)
        self.assertEqual(len(result.candidate_scores), 2)

    def test_all_candidates_failing_raises_first_error(self):
        def lscm_boom(*args, **kwargs):
            raise RuntimeError("lscm failed")

        def cyl_boom(*args, **kwargs):
            raise ArithmeticError("cylindrical failed")

        with pytest.MonkeyPatch.context() as mp:
            mp.setattr(unwrap_module, "_run_lscm", lscm_boom)
            mp.setattr(unwrap_module, "_run_cylindrical", cyl_boom)
            with self.assertRaises(RuntimeError):
                unwrap_hybrid(self.tube)


def test_unknown_method_raises():
    with pytest.raises(ValueError):
        unwrap_mesh(_make_tube(), "origami")


def test_unknown_hybrid_candidate_raises():
    with pytest.raises(ValueError):
        unwrap_hybrid(_make_tube(), candidates=("lscm", "arap"))
    with pytest.raises(ValueError):
        unwrap_hybrid(_make_tube(), candidates=())


def test_invalid_mesh_raises():
    empty = MeshData(vertices=np.zeros((0, 3)), faces=np.zeros((0, 3), dtype=np.int64))
    with pytest.raises(InputError):
        unwrap_mesh(empty)
    with pytest.raises(InputError):
        unwrap_mesh(empty, "hybrid")
