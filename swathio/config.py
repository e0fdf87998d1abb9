#!/usr/bin/env python3
"""
Session configuration.

Parameters mirror the keys of config/swathio_params.yaml. A parameter file
may list any subset of them; anything missing keeps its default.
"""

import logging
from dataclasses import dataclass, fields, replace
from typing import Optional

import yaml

TIMESTAMP_POLICIES = ('reject', 'overwrite')


@dataclass
class SessionConfig:
    """Tunable limits and policies for one ingestion session."""
    max_beams: int = 512               # Largest beam count accepted in a ping
    max_pixels: int = 1024             # Largest sidescan pixel count accepted
    max_devices: int = 12              # Device numbers 0 .. max_devices-1
    max_offsets: int = 12              # Offsets per device
    buffer_capacity: int = 10000       # Samples kept per sensor buffer
    timestamp_policy: str = 'reject'   # 'reject' or 'overwrite'
    max_extrapolation: Optional[float] = None  # Seconds, None = unbounded
    max_resync_bytes: int = 1024 * 1024
    default_projection: str = 'UTM01N'
    require_navigation: bool = False   # Treat missing position as fatal for pings
    log_level: str = 'INFO'

    def __post_init__(self):
        if self.timestamp_policy not in TIMESTAMP_POLICIES:
            raise ValueError(f"timestamp_policy must be one of {TIMESTAMP_POLICIES}, "
                             f"got {self.timestamp_policy!r}")
        if self.max_beams < 0 or self.buffer_capacity < 2:
            raise ValueError("max_beams must be >= 0 and buffer_capacity >= 2")
        if self.max_extrapolation is not None and self.max_extrapolation < 0:
            raise ValueError("max_extrapolation must be positive or None")

    def updated(self, **changes) -> 'SessionConfig':
        """Return a copy with some parameters replaced."""
        return replace(self, **changes)


def load_config(path: str) -> SessionConfig:
    """
    Load a SessionConfig from a YAML parameter file.

    Args:
        path: Path to the YAML file

    Returns:
        SessionConfig with the file's values applied over the defaults
    """
    with open(path, 'r') as f:
        params = yaml.safe_load(f) or {}

    # Accept both a flat mapping and one nested under a 'swathio' key
    if 'swathio' in params and isinstance(params['swathio'], dict):
        params = params['swathio']

    known = {f.name for f in fields(SessionConfig)}
    unknown = set(params) - known
    if unknown:
        raise ValueError(f"Unknown parameters in {path}: {sorted(unknown)}")

    return SessionConfig(**params)


def configure_logging(config: SessionConfig):
    """Apply the configured log level to the root logger (for scripts)."""
    logging.basicConfig(level=getattr(logging, config.log_level.upper(), logging.INFO),
                        format='[%(levelname)s] [%(name)s]: %(message)s')
