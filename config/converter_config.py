#!/usr/bin/env python3
"""
Configuration Manager for dbconvert
Reads conversion settings from the environment and an optional .env file
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from dbconvert.errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass
class ConverterConfig:
    """dbconvert configuration settings"""

    # Copy settings
    batch_size: int = 1000

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # SQLite destination file settings
    sqlite_page_size: int = 4096
    sqlite_encoding: str = "UTF-16"
    sqlite_timeout: float = 30.0

    # SQL Server connection settings
    mssql_login_timeout: int = 60
    mssql_charset: str = "UTF-8"

    def __post_init__(self):
        """Override defaults from DBCONVERT_* environment variables"""
        self.batch_size = self._int('DBCONVERT_BATCH_SIZE', self.batch_size)
        self.log_level = os.environ.get('DBCONVERT_LOG_LEVEL', self.log_level).upper()
        self.log_file = os.environ.get('DBCONVERT_LOG_FILE', self.log_file) or None

        self.sqlite_page_size = self._int('DBCONVERT_SQLITE_PAGE_SIZE', self.sqlite_page_size)
        self.sqlite_encoding = os.environ.get('DBCONVERT_SQLITE_ENCODING', self.sqlite_encoding)
        self.sqlite_timeout = float(os.environ.get('DBCONVERT_SQLITE_TIMEOUT', str(self.sqlite_timeout)))

        self.mssql_login_timeout = self._int('DBCONVERT_MSSQL_LOGIN_TIMEOUT', self.mssql_login_timeout)
        self.mssql_charset = os.environ.get('DBCONVERT_MSSQL_CHARSET', self.mssql_charset)

        if self.batch_size <= 0:
            raise ValidationError(f"Batch size must be positive, got {self.batch_size}",
                                  {'batch_size': self.batch_size})

    @staticmethod
    def _int(key: str, default: int) -> int:
        raw = os.environ.get(key)
        if raw is None or raw.strip() == '':
            return default
        try:
            return int(raw)
        except ValueError:
            raise ValidationError(f"{key} must be an integer, got {raw!r}", {key: raw})

    def get_safe_dict(self) -> Dict[str, Any]:
        """Get configuration as dict (no secrets are held here)"""
        return {
            'batch_size': self.batch_size,
            'log_level': self.log_level,
            'log_file': self.log_file,
            'sqlite_page_size': self.sqlite_page_size,
            'sqlite_encoding': self.sqlite_encoding,
            'sqlite_timeout': self.sqlite_timeout,
            'mssql_login_timeout': self.mssql_login_timeout,
            'mssql_charset': self.mssql_charset,
        }


class ConfigManager:
    """Singleton configuration manager"""

    _instance: Optional['ConfigManager'] = None
    _config: Optional[ConverterConfig] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._config is None:
            self.load_config()

    def load_config(self, env_file: Optional[Path] = None):
        """Load configuration from the environment.

        Priority (highest to lowest):
        1. Environment variables (DBCONVERT_*)
        2. .env file (loaded into os.environ before config creation)
        3. ConverterConfig dataclass defaults
        """
        if env_file is None:
            base_dir = Path(os.environ.get('DBCONVERT_HOME', Path.cwd()))
            env_file = base_dir / '.env'
        if env_file.exists():
            self._load_env_file(env_file)

        self._config = ConverterConfig()

    def _load_env_file(self, env_file: Path):
        """Load environment variables from .env file.

        Only sets values for keys not already in os.environ,
        ensuring exported env vars take precedence over .env file.
        """
        try:
            with open(env_file, 'r') as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith('#') and '=' in line:
                        key, value = line.split('=', 1)
                        key = key.strip()
                        if key not in os.environ:
                            os.environ[key] = value.strip().strip('"').strip("'")
        except OSError as e:
            logger.warning(f"Could not load .env file {env_file}: {e}")

    @property
    def config(self) -> ConverterConfig:
        """Get the current configuration"""
        if self._config is None:
            self.load_config()
        return self._config

    @classmethod
    def reset(cls):
        """Drop the cached configuration so the next access re-reads the environment"""
        cls._config = None
        if cls._instance is not None:
            cls._instance._config = None


def get_config() -> ConverterConfig:
    """Get the global configuration instance"""
    return ConfigManager().config


if __name__ == "__main__":
    config = get_config()
    print("dbconvert Configuration Status:")
    print("-" * 40)
    for key, value in config.get_safe_dict().items():
        print(f"{key}: {value}")
