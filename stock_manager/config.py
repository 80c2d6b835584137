import os
import configparser
from pathlib import Path

class Config:
    """Configuration manager for the Stock Manager."""

    _instance = None

    def __new__(cls):
        """Singleton pattern implementation."""
        if cls._instance is None:
            cls._instance = super(Config, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize the configuration if not already initialized."""
        if self._initialized:
            return

        self._config_dir = Path(os.getenv('STOCK_MANAGER_CONFIG_DIR', 'config'))
        self._config_path = self._config_dir / 'settings.ini'
        self._config = configparser.ConfigParser(interpolation=None)

        # Create config directory if it doesn't exist
        if not self._config_dir.exists():
            self._config_dir.mkdir(parents=True)

        # Load config or create default
        if self._config_path.exists():
            self._config.read(self._config_path)
        else:
            self._create_default_config()

        self._initialized = True

    def _create_default_config(self):
        """Create default configuration file."""
        self._config['DATABASE'] = {
            'url': 'sqlite:///stock_manager.db',
            'echo': 'False',
            'pool_size': '10',
            'max_overflow': '20',
            'pool_timeout': '30',
            'pool_recycle': '1800'
        }

        self._config['LOGGING'] = {
            'level': 'INFO',
            'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            'directory': 'logs',
            'max_size_mb': '10',
            'backup_count': '5',
            'console_output': 'True'
        }

        self._config['INVENTORY'] = {
            'default_min_threshold': '5',
            'default_unit': 'unité(s)',
            'uncategorized_label': 'Non catégorisé'
        }

        self._config['TRANSFERS'] = {
            'history_limit': '5',
            'export_date_format': '%d/%m/%Y'
        }

        self._config['SALES'] = {
            'history_limit': '50'
        }

        self._config['NUMBERING'] = {
            'counter_width': '3',
            'fallback_enabled': 'True',
            'max_retries': '5'
        }

        self._save_config()

    def _save_config(self):
        """Save configuration to file."""
        with open(self._config_path, 'w') as configfile:
            self._config.write(configfile)

    def get(self, section, key, default=None):
        """Get configuration value."""
        try:
            return self._config.get(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError):
            return default

    def get_int(self, section, key, default=None):
        """Get configuration value as integer."""
        try:
            return self._config.getint(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return default

    def get_boolean(self, section, key, default=None):
        """Get configuration value as boolean."""
        try:
            return self._config.getboolean(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return default

    def get_db_url(self):
        """Get the SQLAlchemy database URL.

        The STOCK_MANAGER_DB_URL environment variable takes precedence
        over the settings file.
        """
        return os.getenv(
            'STOCK_MANAGER_DB_URL',
            self.get('DATABASE', 'url', 'sqlite:///stock_manager.db')
        )

    @property
    def log_config(self):
        """Get logging configuration."""
        return {
            'level': self.get('LOGGING', 'level', 'INFO'),
            'format': self.get('LOGGING', 'format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s'),
            'directory': self.get('LOGGING', 'directory', 'logs'),
            'max_size_mb': self.get_int('LOGGING', 'max_size_mb', 10),
            'backup_count': self.get_int('LOGGING', 'backup_count', 5),
            'console_output': self.get_boolean('LOGGING', 'console_output', True)
        }

    @property
    def inventory_rules(self):
        """Get inventory defaults."""
        return {
            'default_min_threshold': self.get_int('INVENTORY', 'default_min_threshold', 5),
            'default_unit': self.get('INVENTORY', 'default_unit', 'unité(s)'),
            'uncategorized_label': self.get('INVENTORY', 'uncategorized_label', 'Non catégorisé')
        }

    @property
    def transfer_rules(self):
        """Get transfer history settings."""
        return {
            'history_limit': self.get_int('TRANSFERS', 'history_limit', 5),
            'export_date_format': self.get('TRANSFERS', 'export_date_format', '%d/%m/%Y')
        }

    @property
    def sales_rules(self):
        """Get sales history settings."""
        return {
            'history_limit': self.get_int('SALES', 'history_limit', 50),
            'export_date_format': self.get('TRANSFERS', 'export_date_format', '%d/%m/%Y')
        }

    @property
    def numbering_rules(self):
        """Get document numbering settings."""
        return {
            'counter_width': self.get_int('NUMBERING', 'counter_width', 3),
            'fallback_enabled': self.get_boolean('NUMBERING', 'fallback_enabled', True),
            'max_retries': self.get_int('NUMBERING', 'max_retries', 5)
        }

# Global config instance
config = Config()
