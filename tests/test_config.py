"""
Configuration Tests
"""

import json

from greenroute.config import DEFAULT_CONFIG, ConfigManager


class TestConfigManager:
    """Test layered configuration loading"""

    def test_defaults_without_directory(self, tmp_path):
        cfg = ConfigManager(str(tmp_path / "missing"))

        assert cfg.get('routing.scheduler.maxInterval') == 45.0
        assert cfg.get_emergency_config() == DEFAULT_CONFIG['emergency']

    def test_file_values_merge_over_defaults(self, tmp_path):
        """Test a file only needs the keys it changes"""
        (tmp_path / "routing.yaml").write_text("loadBalancer:\n  overloadThreshold: 0.8\n")
        (tmp_path / "emergency.json").write_text(json.dumps({'positionGrace': 20}))

        cfg = ConfigManager(str(tmp_path))

        assert cfg.get_load_balancer_config()['overloadThreshold'] == 0.8
        assert cfg.get_load_balancer_config()['maxRebalanceRounds'] == 10
        assert cfg.get('emergency.positionGrace') == 20
        assert cfg.get('emergency.restoreDeadline') == 60.0

    def test_broken_file_skipped(self, tmp_path):
        (tmp_path / "routing.yaml").write_text("scheduler: [unclosed\n")
        (tmp_path / "notes.txt").write_text("ignored")

        cfg = ConfigManager(str(tmp_path))

        assert cfg.failed_files == ["routing.yaml"]
        assert cfg.get('routing.scheduler.minInterval') == 5.0

    def test_missing_key_returns_default(self, tmp_path):
        cfg = ConfigManager(str(tmp_path))

        assert cfg.get('emergency.nope', 'fallback') == 'fallback'
        assert cfg.get('emergency.positionGrace.deeper') is None

    def test_set_and_reload(self, tmp_path):
        """Test runtime overrides last until the next reload"""
        cfg = ConfigManager(str(tmp_path))

        cfg.set('emergency.positionGrace', 12)
        cfg.set('routing.extra.flag', True)
        assert cfg.get('emergency.positionGrace') == 12
        assert cfg.get('routing.extra.flag') is True

        cfg.reload()
        assert cfg.get('emergency.positionGrace') == 30.0
        assert cfg.get('routing.extra') is None

    def test_shipped_config_directory(self):
        """Test the repository config files load cleanly"""
        cfg = ConfigManager()

        assert cfg.failed_files == []
        assert cfg.get_graph_config()['decayHalfLife'] == 300
        assert cfg.get_scheduler_config()['maxInterval'] == 45.0
