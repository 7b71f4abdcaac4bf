import configparser
import logging
import os

from PySide6.QtCore import QObject

from compositor.core.geometry import DEFAULT_ZOOM, clamp_zoom


logger = logging.getLogger(__name__)


class SettingsController(QObject):
    """Manages application settings persistence."""

    PROVIDER_NAMES = ("seadream", "gemini")

    DEFAULT_GENERAL_SETTINGS = {
        "workspace_path": "workspace.json",
    }

    DEFAULT_JOB_SETTINGS = {
        "max_concurrent": 10,
        "poll_interval": 5.0,
        "poll_timeout": 180.0,
        "image_limit": 20,
    }

    DEFAULT_AI_SETTINGS = {
        "last_prompt": "",
        "last_text_prompt": "",
    }

    def __init__(self, path='settings.ini'):
        super().__init__()
        self.path = path
        self.config = configparser.ConfigParser()
        self.config.read(self.path)

        if not self.config.has_section('General'):
            self.config.add_section('General')
        self.last_directory = self.config.get('General', 'last_directory', fallback=os.path.expanduser("~"))
        self.workspace_path = self.config.get(
            'General',
            'workspace_path',
            fallback=self.DEFAULT_GENERAL_SETTINGS["workspace_path"],
        ) or self.DEFAULT_GENERAL_SETTINGS["workspace_path"]

        if not self.config.has_section('View'):
            self.config.add_section('View')
        try:
            zoom_value = self.config.getfloat('View', 'default_zoom')
        except (configparser.NoOptionError, ValueError):
            zoom_value = DEFAULT_ZOOM
        self.default_zoom = clamp_zoom(zoom_value)

        if not self.config.has_section('API'):
            self.config.add_section('API')
        self.api_keys = {
            name: self.config.get('API', name, fallback='').strip()
            for name in self.PROVIDER_NAMES
        }

        if not self.config.has_section('Jobs'):
            self.config.add_section('Jobs')
        self.max_concurrent_jobs = self._get_jobs_int(
            'max_concurrent', self.DEFAULT_JOB_SETTINGS["max_concurrent"]
        )
        self.image_limit = self._get_jobs_int(
            'image_limit', self.DEFAULT_JOB_SETTINGS["image_limit"]
        )
        self.poll_interval = self._get_jobs_float(
            'poll_interval', self.DEFAULT_JOB_SETTINGS["poll_interval"]
        )
        self.poll_timeout = self._get_jobs_float(
            'poll_timeout', self.DEFAULT_JOB_SETTINGS["poll_timeout"]
        )

        if not self.config.has_section('AI'):
            self.config.add_section('AI')
        self.last_prompt = self.config.get(
            'AI', 'last_prompt', fallback=self.DEFAULT_AI_SETTINGS["last_prompt"]
        )
        self.last_text_prompt = self.config.get(
            'AI', 'last_text_prompt', fallback=self.DEFAULT_AI_SETTINGS["last_text_prompt"]
        )
        self._sync_to_config()

    def save_settings(self, ai_settings=None):
        """Persist settings to disk."""
        try:
            if ai_settings:
                if 'prompt' in ai_settings:
                    self.last_prompt = str(ai_settings['prompt'])
                if 'text_prompt' in ai_settings:
                    self.last_text_prompt = str(ai_settings['text_prompt'])
            self._sync_to_config()
            with open(self.path, 'w') as configfile:
                self.config.write(configfile)
        except OSError as e:
            logger.error("Could not write to %s: %s", self.path, e)

    def _get_jobs_int(self, option, fallback):
        try:
            return max(1, self.config.getint('Jobs', option))
        except (configparser.NoOptionError, ValueError):
            return fallback

    def _get_jobs_float(self, option, fallback):
        try:
            value = self.config.getfloat('Jobs', option)
        except (configparser.NoOptionError, ValueError):
            return fallback
        return value if value > 0 else fallback

    def _sync_to_config(self):
        self.config.set('General', 'last_directory', self.last_directory)
        self.config.set('General', 'workspace_path', self.workspace_path)
        self.config.set('View', 'default_zoom', f"{self.default_zoom:.3f}")
        for name, key in self.api_keys.items():
            self.config.set('API', name, key)
        self.config.set('Jobs', 'max_concurrent', str(int(self.max_concurrent_jobs)))
        self.config.set('Jobs', 'image_limit', str(int(self.image_limit)))
        self.config.set('Jobs', 'poll_interval', f"{self.poll_interval:g}")
        self.config.set('Jobs', 'poll_timeout', f"{self.poll_timeout:g}")
        self.config.set('AI', 'last_prompt', self.last_prompt or '')
        self.config.set('AI', 'last_text_prompt', self.last_text_prompt or '')

    def api_key(self, provider):
        return self.api_keys.get(provider, '')

    def set_api_key(self, provider, key):
        if provider not in self.api_keys:
            raise ValueError(f"Unknown provider: {provider}")
        self.api_keys[provider] = (key or '').strip()
        self._sync_to_config()

    def get_job_settings(self):
        return {
            'max_concurrent': int(self.max_concurrent_jobs),
            'poll_interval': float(self.poll_interval),
            'poll_timeout': float(self.poll_timeout),
            'image_limit': int(self.image_limit),
        }

    def get_default_job_settings(self):
        return dict(self.DEFAULT_JOB_SETTINGS)

    def get_ai_settings(self):
        return {
            'prompt': self.last_prompt,
            'text_prompt': self.last_text_prompt,
        }
