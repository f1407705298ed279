"""Configuration management for ecrdump."""

import os
import yaml
from typing import Dict, Any, List, Optional

from ..utils.retry import RetryPolicy


DEFAULTS = {
    'concurrency': 10,
    'page_size': 1000,
    'max_attempts': 5,
    'retry_base_delay': 0.5,
    'retry_max_delay': 20.0,
    'include': [],
    'exclude': [],
}

INT_KEYS = ('concurrency', 'page_size', 'max_attempts')
FLOAT_KEYS = ('retry_base_delay', 'retry_max_delay')
LIST_KEYS = ('include', 'exclude')


class Config:
    """Configuration manager for ecrdump.

    Values come from, in increasing order of precedence: built-in defaults,
    the YAML file named by ``ECRDUMP_CONFIG``, and explicit overrides (the
    command line). AWS session settings come from the environment.
    """

    def __init__(self, overrides: Optional[Dict[str, Any]] = None):
        self.config_path = os.environ.get('ECRDUMP_CONFIG')
        self.region = os.environ.get('AWS_REGION') or os.environ.get('AWS_DEFAULT_REGION')
        self.profile_name = os.environ.get('AWS_PROFILE')
        self.registry_id = os.environ.get('ECR_REGISTRY_ID')

        self._settings = dict(DEFAULTS)
        self._settings.update(self._load_file())

        overrides = dict(overrides or {})
        for key in ('region', 'profile_name', 'registry_id'):
            value = overrides.pop(key, None)
            if value:
                setattr(self, key, value)
        self._settings.update({k: v for k, v in overrides.items() if v is not None})

        self._validate()

    def _load_file(self) -> Dict[str, Any]:
        """Load settings from the YAML config file, if one is configured."""
        if not self.config_path:
            return {}
        if not os.path.exists(self.config_path):
            raise FileNotFoundError(f"ecrdump config file not found: {self.config_path}")

        with open(self.config_path, 'r') as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"ecrdump config file must contain a mapping: {self.config_path}")

        unknown = sorted(set(data) - set(DEFAULTS))
        if unknown:
            raise ValueError(f"Unknown settings in {self.config_path}: {', '.join(unknown)}")
        return data

    def _validate(self):
        for key in INT_KEYS:
            value = self._settings[key]
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ValueError(f"{key} must be a positive integer, got {value!r}")
        for key in FLOAT_KEYS:
            value = self._settings[key]
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                raise ValueError(f"{key} must be a non-negative number, got {value!r}")
        for key in LIST_KEYS:
            value = self._settings[key]
            if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
                raise ValueError(f"{key} must be a list of glob patterns, got {value!r}")
        if self._settings['page_size'] > 1000:
            raise ValueError("page_size cannot exceed 1000")

    @property
    def concurrency(self) -> int:
        return self._settings['concurrency']

    @property
    def page_size(self) -> int:
        return self._settings['page_size']

    @property
    def include(self) -> List[str]:
        return list(self._settings['include'])

    @property
    def exclude(self) -> List[str]:
        return list(self._settings['exclude'])

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self._settings['max_attempts'],
            base_delay=float(self._settings['retry_base_delay']),
            max_delay=float(self._settings['retry_max_delay'])
        )
