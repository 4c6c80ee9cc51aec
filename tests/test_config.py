#!/usr/bin/env python3
"""
Configuration tests: defaults, DBCONVERT_* overrides and .env loading.
"""

import os
from unittest.mock import patch

import pytest

from config.converter_config import ConfigManager, ConverterConfig, get_config
from dbconvert.errors import ValidationError


@pytest.fixture(autouse=True)
def clean_env():
    # .env loading writes straight into os.environ; restore it wholesale
    with patch.dict(os.environ):
        for key in [k for k in os.environ if k.startswith('DBCONVERT_')]:
            del os.environ[key]
        ConfigManager.reset()
        yield
    ConfigManager.reset()


class TestConverterConfig:

    def test_defaults(self):
        config = ConverterConfig()
        assert config.batch_size == 1000
        assert config.log_level == 'INFO'
        assert config.log_file is None
        assert config.sqlite_page_size == 4096
        assert config.sqlite_encoding == 'UTF-16'
        assert config.mssql_login_timeout == 60

    def test_environment_overrides(self):
        with patch.dict(os.environ, {'DBCONVERT_BATCH_SIZE': '250', 'DBCONVERT_LOG_LEVEL': 'debug',
                                     'DBCONVERT_SQLITE_TIMEOUT': '5'}):
            config = ConverterConfig()
        assert config.batch_size == 250
        assert config.log_level == 'DEBUG'
        assert config.sqlite_timeout == 5.0

    def test_bad_integer(self):
        with patch.dict(os.environ, {'DBCONVERT_BATCH_SIZE': 'lots'}):
            with pytest.raises(ValidationError):
                ConverterConfig()

    def test_non_positive_batch_size(self):
        with patch.dict(os.environ, {'DBCONVERT_BATCH_SIZE': '0'}):
            with pytest.raises(ValidationError):
                ConverterConfig()

    def test_safe_dict(self):
        safe = ConverterConfig().get_safe_dict()
        assert set(safe) == {'batch_size', 'log_level', 'log_file', 'sqlite_page_size',
                             'sqlite_encoding', 'sqlite_timeout', 'mssql_login_timeout',
                             'mssql_charset'}


class TestConfigManager:

    def test_singleton(self):
        assert ConfigManager() is ConfigManager()
        assert get_config() is ConfigManager().config

    def test_env_file_loaded(self, tmp_path, monkeypatch):
        (tmp_path / '.env').write_text('# comment\nDBCONVERT_BATCH_SIZE="42"\nDBCONVERT_LOG_FILE=conv.log\n')
        monkeypatch.setenv('DBCONVERT_HOME', str(tmp_path))
        config = get_config()
        assert config.batch_size == 42
        assert config.log_file == 'conv.log'

    def test_exported_variable_wins_over_env_file(self, tmp_path, monkeypatch):
        (tmp_path / '.env').write_text('DBCONVERT_BATCH_SIZE=42\n')
        monkeypatch.setenv('DBCONVERT_HOME', str(tmp_path))
        monkeypatch.setenv('DBCONVERT_BATCH_SIZE', '7')
        assert get_config().batch_size == 7

    def test_reset_rereads(self, tmp_path, monkeypatch):
        monkeypatch.setenv('DBCONVERT_HOME', str(tmp_path))
        assert get_config().batch_size == 1000
        monkeypatch.setenv('DBCONVERT_BATCH_SIZE', '9')
        ConfigManager.reset()
        assert get_config().batch_size == 9
