"""
設定載入與 YAML 覆寫測試
"""

import pytest

from pnm_perm.config import config
from pnm_perm.config.config_manager import (
    CONFIG_ENV_VAR, SimulationSettings, apply_overrides, load_settings,
)


class TestOverrides:
    """允許/禁止的覆寫"""

    def test_allowed_keys_applied(self):
        settings = apply_overrides(SimulationSettings(), {
            "solver": {"tolerance": "1e-8", "cpu_max_iterations": 200},
            "lbm": {"max_grid_cpu": 40.0},
        })
        assert settings.solver_tolerance == 1e-8
        assert settings.cpu_max_iterations == 200
        assert isinstance(settings.max_grid_cpu, int) and settings.max_grid_cpu == 40

    def test_prohibited_and_unknown_keys_ignored(self):
        settings = apply_overrides(SimulationSettings(), {
            "lbm": {"tau": 0.6},
            "unknown": {"key": 1},
        })
        assert settings == SimulationSettings()
        assert settings.tau == config.LBM_TAU

    def test_bad_value_skipped(self):
        settings = apply_overrides(SimulationSettings(), {"kozeny_carman": {"constant": "five"}})
        assert settings.kozeny_constant == config.KOZENY_CONSTANT

    def test_max_grid_by_device(self):
        settings = SimulationSettings(max_grid_gpu=150, max_grid_cpu=100)
        assert settings.max_grid(True) == 150
        assert settings.max_grid(False) == 100


class TestLoadSettings:
    """YAML 檔案"""

    def test_load_from_path(self, tmp_path):
        path = tmp_path / "perm.yaml"
        path.write_text("boundaries:\n  fraction: 0.2\nlbm:\n  tau: 0.9\n", encoding="utf-8")
        settings = load_settings(str(path))
        assert settings.boundary_fraction == 0.2
        assert settings.tau == config.LBM_TAU

    def test_environment_variable(self, tmp_path, monkeypatch):
        path = tmp_path / "env.yaml"
        path.write_text("navier_stokes:\n  fluid_density: 998.2\n", encoding="utf-8")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        assert load_settings().fluid_density == pytest.approx(998.2)

    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_settings(str(tmp_path / "missing.yaml")) == SimulationSettings()

    def test_non_mapping_yaml_ignored(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n", encoding="utf-8")
        assert load_settings(str(path)) == SimulationSettings()

    def test_packaged_defaults_match_constants(self):
        assert load_settings() == SimulationSettings()
