from limbflat.runtime_defaults import (
    ENV_CG_TOLERANCE,
    ENV_CIRCUMFERENCE_SAMPLES,
    ENV_LSCM_MAX_ITERATIONS,
    ENV_PIN_PENALTY,
    ENV_SEAM_ANGLE_TOLERANCE,
    ENV_SEAM_SPLIT_RATIO,
    load_runtime_defaults,
)


def _clear_runtime_env(monkeypatch):
    for key in (
        ENV_LSCM_MAX_ITERATIONS,
        ENV_CG_TOLERANCE,
        ENV_PIN_PENALTY,
        ENV_SEAM_ANGLE_TOLERANCE,
        ENV_SEAM_SPLIT_RATIO,
        ENV_CIRCUMFERENCE_SAMPLES,
    ):
        monkeypatch.delenv(key, raising=False)


def test_runtime_defaults_without_env(monkeypatch):
    _clear_runtime_env(monkeypatch)
    defaults = load_runtime_defaults()

    assert defaults.lscm_max_iterations == 200
    assert defaults.cg_tolerance == 1e-6
    assert defaults.pin_penalty == 1e8
    assert defaults.seam_angle_tolerance == 0.5
    assert defaults.seam_split_ratio == 0.7
    assert defaults.circumference_samples == 10


def test_runtime_defaults_with_valid_env(monkeypatch):
    _clear_runtime_env(monkeypatch)
    monkeypatch.setenv(ENV_LSCM_MAX_ITERATIONS, "800")
    monkeypatch.setenv(ENV_CG_TOLERANCE, "1e-8")
    monkeypatch.setenv(ENV_PIN_PENALTY, "1e10")
    monkeypatch.setenv(ENV_SEAM_ANGLE_TOLERANCE, "0.25")
    monkeypatch.setenv(ENV_SEAM_SPLIT_RATIO, " 0.6 ")
    monkeypatch.setenv(ENV_CIRCUMFERENCE_SAMPLES, "25")

    defaults = load_runtime_defaults()

    assert defaults.lscm_max_iterations == 800
    assert defaults.cg_tolerance == 1e-8
    assert defaults.pin_penalty == 1e10
    assert defaults.seam_angle_tolerance == 0.25
    assert defaults.seam_split_ratio == 0.6
    assert defaults.circumference_samples == 25


def test_runtime_defaults_invalid_values_fallback(monkeypatch):
    _clear_runtime_env(monkeypatch)
    monkeypatch.setenv(ENV_LSCM_MAX_ITERATIONS, "abc")
    monkeypatch.setenv(ENV_CG_TOLERANCE, "nan")
    monkeypatch.setenv(ENV_PIN_PENALTY, "10")
    monkeypatch.setenv(ENV_SEAM_ANGLE_TOLERANCE, "-1")
    monkeypatch.setenv(ENV_SEAM_SPLIT_RATIO, "2.5")
    monkeypatch.setenv(ENV_CIRCUMFERENCE_SAMPLES, "1")

    defaults = load_runtime_defaults()

    assert defaults.lscm_max_iterations == 200
    assert defaults.cg_tolerance == 1e-6
    assert defaults.pin_penalty == 1e8
    assert defaults.seam_angle_tolerance == 0.5
    assert defaults.seam_split_ratio == 0.7
    assert defaults.circumference_samples == 10
