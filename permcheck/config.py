#!/usr/bin/env python3
"""
Checker Configuration

Settings for one PermissionChecker instance. Values come from the dataclass
defaults, then an optional YAML file, then PERMCHECK_* environment variables.
"""

import logging
import os
import tempfile
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

import yaml

from permcheck.exceptions import ConfigError

logger = logging.getLogger(__name__)

RESOURCE_STRATEGIES = ('entity', 'base_path')
COMPLETENESS_POLICIES = ('all_facts', 'condition_optional')
ORACLE_KINDS = ('static', 'llm')

ENV_PREFIX = 'PERMCHECK_'


@dataclass
class CheckerConfig:
    """Configuration for permission checker behavior"""
    extract_root: str = field(default_factory=lambda: os.path.join(tempfile.gettempdir(), 'permcheck'))
    project_dir_name: str = 'nestjs-project'
    excluded_dirs: List[str] = field(default_factory=lambda: ['auth', 'user'])
    resource_strategy: str = 'entity'          # entity | base_path
    completeness: str = 'all_facts'            # all_facts | condition_optional
    oracle: str = 'static'                     # static | llm
    use_bedrock: bool = True
    ai_timeout_seconds: float = 120.0
    ai_max_tokens: int = 1000
    ai_temperature: float = 0.0
    debug: bool = False

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Raise ConfigError for values outside the supported choices"""
        if self.resource_strategy not in RESOURCE_STRATEGIES:
            raise ConfigError(
                f"resource_strategy must be one of {RESOURCE_STRATEGIES}, got {self.resource_strategy!r}"
            )
        if self.completeness not in COMPLETENESS_POLICIES:
            raise ConfigError(
                f"completeness must be one of {COMPLETENESS_POLICIES}, got {self.completeness!r}"
            )
        if self.oracle not in ORACLE_KINDS:
            raise ConfigError(f"oracle must be one of {ORACLE_KINDS}, got {self.oracle!r}")
        if self.ai_timeout_seconds <= 0:
            raise ConfigError("ai_timeout_seconds must be positive")

    @property
    def extract_path(self) -> str:
        """Directory the project archive is unpacked into"""
        return os.path.join(self.extract_root, self.project_dir_name)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CheckerConfig':
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigError(str(e)) from e

    @classmethod
    def load(cls, config_path: Optional[str] = None,
             environ: Optional[Dict[str, str]] = None) -> 'CheckerConfig':
        """
        Build a config from an optional YAML file plus environment overrides

        Args:
            config_path: Path to a YAML mapping of config keys
            environ: Environment mapping (defaults to os.environ)

        Returns:
            Validated CheckerConfig
        """
        data: Dict[str, Any] = {}

        if config_path:
            try:
                with open(config_path, 'r') as f:
                    loaded = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigError(f"Failed to load config {config_path}: {e}") from e
            if not isinstance(loaded, dict):
                raise ConfigError(f"Config file {config_path} must contain a mapping")
            data.update(loaded)

        data.update(_env_overrides(environ if environ is not None else os.environ))

        config = cls.from_dict(data)
        logger.debug(f"[CONFIG] Loaded config: {config}")
        return config


def _env_overrides(environ: Dict[str, str]) -> Dict[str, Any]:
    """Convert PERMCHECK_<FIELD> variables to typed config values"""
    overrides = {}
    for f in fields(CheckerConfig):
        raw = environ.get(ENV_PREFIX + f.name.upper())
        if raw is None:
            continue

        if f.type in (bool, 'bool'):
            overrides[f.name] = raw.strip().lower() in ('1', 'true', 'yes', 'on')
        elif f.type in (int, 'int'):
            overrides[f.name] = _convert(f.name, raw, int)
        elif f.type in (float, 'float'):
            overrides[f.name] = _convert(f.name, raw, float)
        elif f.name == 'excluded_dirs':
            overrides[f.name] = [d.strip() for d in raw.split(',') if d.strip()]
        else:
            overrides[f.name] = raw.strip()
    return overrides


def _convert(name: str, raw: str, type_):
    try:
        return type_(raw)
    except ValueError as e:
        raise ConfigError(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}") from e
