"""
kernel_finder Configuration
===========================

Loads configuration from kernel_finder.yaml with environment variable overrides.
"""

import os
import yaml
import logging
from pathlib import Path
from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any, List

from kernel_finder.errors import ConfigError
from kernel_finder.store import REMOTE_KERNEL_SPECS_CACHE_KEY

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "kernel_finder.yaml"


# =============================================================================
# Configuration Data Classes
# =============================================================================

@dataclass
class RemoteConfig:
    """Remote caching finder configuration."""
    # Servers keep reporting a disposed kernel for a short while
    dispose_refresh_delay: float = 2.0
    cache_key_prefix: str = REMOTE_KERNEL_SPECS_CACHE_KEY


@dataclass
class PreferredConfig:
    """Preferred-kernel selection configuration."""
    open_debounce: float = 0.1
    retry_ranking: bool = True


@dataclass
class SourcesConfig:
    """Kernel source configuration."""
    web_mode: bool = False  # No local kernels when True
    kernel_search_paths: List[str] = field(default_factory=list)


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"


@dataclass
class KernelFinderConfig:
    """Root configuration container."""
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    preferred: PreferredConfig = field(default_factory=PreferredConfig)
    sources: SourcesConfig = field(default_factory=SourcesConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# Configuration Loader
# =============================================================================

def find_config_file(start_path: Optional[Path] = None) -> Optional[Path]:
    """
    Find kernel_finder.yaml by searching upward from start_path.

    Search order:
    1. start_path / kernel_finder.yaml
    2. Parent directories (recursive)
    3. ~/.config/kernel_finder/kernel_finder.yaml

    Args:
        start_path: Starting directory (defaults to cwd)

    Returns:
        Path to config file or None if not found
    """
    if start_path is None:
        start_path = Path.cwd()

    current = Path(start_path).resolve()
    for _ in range(10):  # Max 10 levels up
        candidate = current / CONFIG_FILENAME
        if candidate.exists():
            return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent

    user_config = Path.home() / ".config" / "kernel_finder" / CONFIG_FILENAME
    if user_config.exists():
        return user_config

    return None


def load_config(config_path: Optional[Path] = None) -> KernelFinderConfig:
    """
    Load configuration from YAML file with environment variable overrides.

    Environment variables override config file values:
    - KERNEL_FINDER_LOG_LEVEL -> logging.level
    - KERNEL_FINDER_WEB_MODE -> sources.web_mode
    - KERNEL_FINDER_REFRESH_DELAY -> remote.dispose_refresh_delay
    - KERNEL_FINDER_OPEN_DEBOUNCE -> preferred.open_debounce

    Args:
        config_path: Path to config file (auto-detected if None)

    Returns:
        KernelFinderConfig instance

    Raises:
        ConfigError: If the resulting values are invalid
    """
    config = KernelFinderConfig()

    if config_path is None:
        config_path = find_config_file()

    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        try:
            with open(config_path, 'r') as f:
                data = yaml.safe_load(f) or {}
            config = _parse_config_dict(data)
        except Exception as e:
            logger.warning(f"Failed to load config: {e}, using defaults")
    else:
        logger.debug("No config file found, using defaults")

    config = _apply_env_overrides(config)
    _validate_config(config)
    return config


def _parse_config_dict(data: Dict[str, Any]) -> KernelFinderConfig:
    """Parse configuration dictionary into KernelFinderConfig."""
    config = KernelFinderConfig()

    if "remote" in data:
        remote = data["remote"] or {}
        config.remote = RemoteConfig(
            dispose_refresh_delay=float(remote.get("dispose_refresh_delay", config.remote.dispose_refresh_delay)),
            cache_key_prefix=remote.get("cache_key_prefix", config.remote.cache_key_prefix),
        )

    if "preferred" in data:
        preferred = data["preferred"] or {}
        config.preferred = PreferredConfig(
            open_debounce=float(preferred.get("open_debounce", config.preferred.open_debounce)),
            retry_ranking=bool(preferred.get("retry_ranking", config.preferred.retry_ranking)),
        )

    if "sources" in data:
        sources = data["sources"] or {}
        config.sources = SourcesConfig(
            web_mode=bool(sources.get("web_mode", config.sources.web_mode)),
            kernel_search_paths=list(sources.get("kernel_search_paths") or []),
        )

    if "logging" in data:
        log = data["logging"] or {}
        config.logging = LoggingConfig(level=str(log.get("level", config.logging.level)).upper())

    return config


def _apply_env_overrides(config: KernelFinderConfig) -> KernelFinderConfig:
    """Apply environment variable overrides to config."""
    if os.environ.get("KERNEL_FINDER_LOG_LEVEL"):
        config.logging.level = os.environ["KERNEL_FINDER_LOG_LEVEL"].upper()

    if os.environ.get("KERNEL_FINDER_WEB_MODE"):
        config.sources.web_mode = os.environ["KERNEL_FINDER_WEB_MODE"].lower() in ("true", "1", "yes")

    if os.environ.get("KERNEL_FINDER_REFRESH_DELAY"):
        try:
            config.remote.dispose_refresh_delay = float(os.environ["KERNEL_FINDER_REFRESH_DELAY"])
        except ValueError:
            logger.warning("Ignoring invalid KERNEL_FINDER_REFRESH_DELAY")

    if os.environ.get("KERNEL_FINDER_OPEN_DEBOUNCE"):
        try:
            config.preferred.open_debounce = float(os.environ["KERNEL_FINDER_OPEN_DEBOUNCE"])
        except ValueError:
            logger.warning("Ignoring invalid KERNEL_FINDER_OPEN_DEBOUNCE")

    return config


def _validate_config(config: KernelFinderConfig) -> None:
    """Validate configuration values."""
    if config.remote.dispose_refresh_delay < 0:
        raise ConfigError(f"remote.dispose_refresh_delay must be >= 0, got {config.remote.dispose_refresh_delay}")
    if config.preferred.open_debounce < 0:
        raise ConfigError(f"preferred.open_debounce must be >= 0, got {config.preferred.open_debounce}")
    if not config.remote.cache_key_prefix:
        raise ConfigError("remote.cache_key_prefix must not be empty")
    if config.logging.level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
        logger.warning(f"Unknown log level '{config.logging.level}', using INFO")
        config.logging.level = "INFO"


def save_config(config: KernelFinderConfig, path: Path) -> None:
    """
    Save configuration to YAML file.

    Args:
        config: KernelFinderConfig instance
        path: Output path
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        yaml.dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)

    logger.info(f"Configuration saved to: {path}")


# =============================================================================
# Global Config Instance
# =============================================================================

_global_config: Optional[KernelFinderConfig] = None


def get_config() -> KernelFinderConfig:
    """Get the global configuration instance (lazy-loaded)."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def reload_config(config_path: Optional[Path] = None) -> KernelFinderConfig:
    """Reload configuration from file."""
    global _global_config
    _global_config = load_config(config_path)
    return _global_config
