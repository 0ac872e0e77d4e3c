import json
import os
from pathlib import Path

DEFAULT_SETTINGS = {
    "dataset": {
        "coco_url": "http://images.cocodataset.org/zips/val2017.zip",
        "image_limit": 600,
        "custom_directory": None,
    },
    "training": {},
}


class ConfigManager:
    @staticmethod
    def load_config(config_path, default_config=None):
        """
        Load configuration from a file. If the file does not exist and default_config is provided,
        create the file with the default configuration.

        :param config_path: Path to the configuration file.
        :param default_config: A dictionary with default configuration values.
        :return: Loaded configuration as a dictionary.
        """
        if not os.path.exists(config_path):
            if default_config is not None:
                ConfigManager.save_config(default_config, config_path)
                return default_config
            raise FileNotFoundError(f"Config file '{config_path}' not found.")

        try:
            with open(config_path, "r") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in config file '{config_path}': {e}")

    @staticmethod
    def save_config(config, config_path):
        """
        Save configuration to a file.

        :param config: Dictionary containing configuration values.
        :param config_path: Path to save the configuration file.
        """
        try:
            Path(config_path).parent.mkdir(parents=True, exist_ok=True)
            with open(config_path, "w") as f:
                json.dump(config, f, indent=4)
        except OSError as e:
            raise IOError(f"Failed to save config to '{config_path}': {e}")

    @staticmethod
    def load_settings(config_path):
        """
        Load application settings, filling in any section or key missing from the file.

        :param config_path: Path to the settings file.
        :return: Settings dictionary with every default key present.
        """
        loaded = ConfigManager.load_config(config_path, default_config=json.loads(json.dumps(DEFAULT_SETTINGS)))
        settings = {}
        for section, defaults in DEFAULT_SETTINGS.items():
            values = dict(defaults)
            values.update(loaded.get(section) or {})
            settings[section] = values
        return settings

    @staticmethod
    def update_section(config_path, section, values):
        """
        Merge values into one section of the settings file and save it.

        :param config_path: Path to the settings file.
        :param section: Section name, e.g. "training".
        :param values: Dictionary of values to merge.
        :return: The full updated settings.
        """
        settings = ConfigManager.load_settings(config_path)
        settings.setdefault(section, {}).update(values)
        ConfigManager.save_config(settings, config_path)
        return settings
