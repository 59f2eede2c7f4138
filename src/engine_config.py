"""
Engine configuration

Settings come from three layers, later layers winning:
  1. defaults declared on the models below
  2. config.json in the working directory (or an explicit path)
  3. THREAT_ENGINE_* environment variables, with a .env file loaded first
"""

import json
import os
from pathlib import Path
from typing import List, Literal, Optional

from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from errors import ConfigError


class URLAnalyzerConfig(BaseModel):
    cache_enabled: bool = True
    cache_ttl: float = 3600.0  # seconds
    cache_size: int = 1000
    block_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    sensitivity_level: Literal['low', 'medium', 'high'] = 'medium'


class ScriptBlockerConfig(BaseModel):
    enabled: bool = True
    mode: Literal['strict', 'moderate', 'permissive'] = 'moderate'
    allowlist: List[str] = Field(default_factory=lambda: ['google.com', 'youtube.com', 'github.com'])
    history_size: int = 100


class BehaviorConfig(BaseModel):
    min_visits_for_baseline: int = 5
    anomaly_threshold: float = 2.5
    ema_alpha: float = Field(default=0.3, gt=0.0, le=1.0)
    std_dev_floor: float = 0.5
    z_score_cap: float = 10.0
    profile_max_age_days: int = 90


class ExtensionScannerConfig(BaseModel):
    scan_interval_hours: float = 6.0
    canonical_update_host: str = 'clients2.google.com'
    risk_increase_threshold: int = 20


class DispatcherConfig(BaseModel):
    history_size: int = 100
    message_max_length: int = 200


class EngineConfig(BaseModel):
    enabled: bool = True
    allowlist: List[str] = Field(default_factory=list)
    storage_dir: Optional[str] = None
    threat_db_paths: List[str] = Field(default_factory=list)
    rule_packs: List[str] = Field(default_factory=list)
    ml_enabled: bool = True
    recent_threats_size: int = 20

    url: URLAnalyzerConfig = Field(default_factory=URLAnalyzerConfig)
    script: ScriptBlockerConfig = Field(default_factory=ScriptBlockerConfig)
    behavior: BehaviorConfig = Field(default_factory=BehaviorConfig)
    extensions: ExtensionScannerConfig = Field(default_factory=ExtensionScannerConfig)
    dispatcher: DispatcherConfig = Field(default_factory=DispatcherConfig)


# env var -> (section, key); section None means top level
ENV_OVERRIDES = {
    'THREAT_ENGINE_ENABLED': (None, 'enabled'),
    'THREAT_ENGINE_STORAGE_DIR': (None, 'storage_dir'),
    'THREAT_ENGINE_MODE': ('script', 'mode'),
    'THREAT_ENGINE_SENSITIVITY': ('url', 'sensitivity_level'),
    'THREAT_ENGINE_BLOCK_THRESHOLD': ('url', 'block_threshold'),
}


def load_config(path='config.json', env=None, dotenv=True):
    """
    Load the engine configuration.

    Args:
        path: JSON config file; a missing file means defaults only
        env: mapping used instead of os.environ (tests)
        dotenv: load a .env file into the environment first

    Raises:
        ConfigError: the file is unreadable or a value fails validation
    """
    if dotenv and env is None:
        load_dotenv()
    env = os.environ if env is None else env

    data = {}
    config_path = Path(path) if path else None
    if config_path and config_path.exists():
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Error loading config {config_path}: {e}") from e
        logger.debug(f"[Config] Loaded {config_path}")

    for var, (section, key) in ENV_OVERRIDES.items():
        value = env.get(var)
        if value is None or value == '':
            continue
        target = data if section is None else data.setdefault(section, {})
        target[key] = value
        logger.debug(f"[Config] {var} overrides {section or 'engine'}.{key}")

    try:
        return EngineConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
