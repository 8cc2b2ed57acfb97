import os

from proxmon.settings import DEFAULT_SETTINGS, apply_env_overrides, load_settings

SAMPLE_SETTINGS = os.path.join(os.path.dirname(__file__), '../config/settings.yaml')


class TestLoadSettings:

    def test_missing_file_uses_defaults(self, tmp_path):
        settings = load_settings(str(tmp_path / 'absent.yaml'), environ={})
        assert settings == DEFAULT_SETTINGS
        assert settings is not DEFAULT_SETTINGS

    def test_file_values_merge_over_defaults(self, tmp_path):
        path = tmp_path / 'settings.yaml'
        path.write_text("storage:\n  retention_days: 30\nweb:\n  port: 8080\n")

        settings = load_settings(str(path), environ={})

        assert settings['storage']['retention_days'] == 30
        assert settings['storage']['metrics_dir'] == 'data/metrics'
        assert settings['web'] == {'host': '0.0.0.0', 'port': 8080}

    def test_sample_settings_file_loads(self):
        settings = load_settings(SAMPLE_SETTINGS, environ={})
        assert settings['collection']['interval_minutes'] > 0

    def test_env_overrides_file(self, tmp_path):
        path = tmp_path / 'settings.yaml'
        path.write_text("collection:\n  interval_minutes: 10\n")

        settings = load_settings(str(path), environ={
            'METRICS_COLLECTION_INTERVAL': '2',
            'METRICS_COLLECTION_ENABLED': 'true',
            'METRICS_RETENTION_DAYS': '14',
            'PORT': '9000',
        })

        assert settings['collection']['interval_minutes'] == 2
        assert settings['collection']['enabled'] is True
        assert settings['storage']['retention_days'] == 14
        assert settings['web']['port'] == 9000


class TestEnvOverrides:

    def test_invalid_value_is_ignored(self):
        settings = apply_env_overrides({'storage': {'retention_days': 90}},
                                       {'METRICS_RETENTION_DAYS': 'ninety'})
        assert settings['storage']['retention_days'] == 90

    def test_enabled_only_for_true(self):
        settings = apply_env_overrides({'collection': {'enabled': True}},
                                       {'METRICS_COLLECTION_ENABLED': 'no'})
        assert settings['collection']['enabled'] is False

    def test_empty_value_is_ignored(self):
        settings = apply_env_overrides({'web': {'port': 3000}}, {'PORT': ''})
        assert settings['web']['port'] == 3000
