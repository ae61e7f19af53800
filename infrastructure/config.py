"""
FUNNEL CONFIG - TOML Configuration and Logging Setup

Configuration is loaded once from config/funnel.toml and handed to the
components that need it. Missing files or sections fall back to defaults
with a warning; they never stop the tool.

Usage:
    from infrastructure.config import load_config, configure_logging

    config = load_config()
    configure_logging(config.log_level)
    graph = FunnelGraph(name=config.default_funnel_name)
"""
import logging
import warnings
from pathlib import Path
from typing import Any, Dict, Optional, Union

import msgspec


DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "funnel.toml"

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class FunnelConfig(msgspec.Struct, kw_only=True):
    """Runtime settings for the funnel tools."""
    log_level: str = "WARNING"
    default_funnel_name: str = "Untitled Funnel"
    grid_spacing: int = 25
    node_width: int = 200
    node_height: int = 75
    keyboard_insert_node_gap: int = 75

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "FunnelConfig":
        """Build from the parsed TOML sections ([logging], [funnel], [canvas])."""
        logging_cfg = config.get("logging", {})
        funnel_cfg = config.get("funnel", {})
        canvas_cfg = config.get("canvas", {})
        defaults = cls()
        return cls(
            log_level=str(logging_cfg.get("level", defaults.log_level)).upper(),
            default_funnel_name=funnel_cfg.get("default_name", defaults.default_funnel_name),
            grid_spacing=int(canvas_cfg.get("grid_spacing", defaults.grid_spacing)),
            node_width=int(canvas_cfg.get("node_width", defaults.node_width)),
            node_height=int(canvas_cfg.get("node_height", defaults.node_height)),
            keyboard_insert_node_gap=int(
                canvas_cfg.get("keyboard_insert_node_gap", defaults.keyboard_insert_node_gap)
            ),
        )


def load_toml_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load the raw TOML configuration.

    Returns:
        Dict with all configuration sections (empty on failure)
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    try:
        import tomllib

        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except Exception as e:
        warnings.warn(f"Failed to load config from {config_path}, using defaults: {e}")
        return {}


def load_config(path: Optional[Union[str, Path]] = None) -> FunnelConfig:
    """Load configuration from TOML, falling back to defaults."""
    return FunnelConfig.from_dict(load_toml_config(path))


def configure_logging(level: Union[str, int] = "WARNING") -> None:
    """Configure root logging for CLI use."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            warnings.warn("Unknown log level, using WARNING")
            level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)
