"""
Configuration Management

Handles loading configuration from environment variables and config files.
Client and server must agree on port, request token and reply prefix;
if they don't, discovery silently finds nothing.
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass, fields
from typing import Optional

from dotenv import load_dotenv

from .discovery.protocol import (
    BROADCAST_ADDRESS,
    DISCOVERY_PORT,
    DISCOVERY_REPLY,
    DISCOVERY_REQUEST,
    MAX_PACKET_SIZE,
)


@dataclass
class Config:
    """
    Discovery endpoint configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (LANBEACON_*)
    2. Config file (JSON)
    3. Default values
    """
    # Network
    host: str = '0.0.0.0'
    port: int = DISCOVERY_PORT
    broadcast_address: str = BROADCAST_ADDRESS

    # Protocol tokens
    request_token: str = DISCOVERY_REQUEST
    reply_prefix: str = DISCOVERY_REPLY

    # Server
    advertise_address: Optional[str] = None  # selected from interfaces if not set
    max_receive_errors: int = 5
    max_packet_size: int = MAX_PACKET_SIZE

    # Timeouts (seconds)
    reply_timeout: float = 5.0
    poll_interval: float = 0.5  # how often blocking receives check for stop/cancel

    # Logging
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config = cls()

        # Network
        config.host = os.getenv('LANBEACON_HOST', config.host)
        config.port = int(os.getenv('LANBEACON_PORT', config.port))
        config.broadcast_address = os.getenv(
            'LANBEACON_BROADCAST_ADDRESS', config.broadcast_address
        )

        # Protocol tokens
        config.request_token = os.getenv('LANBEACON_REQUEST_TOKEN', config.request_token)
        config.reply_prefix = os.getenv('LANBEACON_REPLY_PREFIX', config.reply_prefix)

        # Server
        config.advertise_address = os.getenv(
            'LANBEACON_ADVERTISE_ADDRESS', config.advertise_address
        ) or None
        config.max_receive_errors = int(
            os.getenv('LANBEACON_MAX_RECEIVE_ERRORS', config.max_receive_errors)
        )

        # Timeouts
        config.reply_timeout = float(os.getenv('LANBEACON_REPLY_TIMEOUT', config.reply_timeout))
        config.poll_interval = float(os.getenv('LANBEACON_POLL_INTERVAL', config.poll_interval))

        # Logging
        config.log_level = os.getenv('LANBEACON_LOG_LEVEL', config.log_level)

        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()
        known = {f.name for f in fields(cls)}
        for key, value in data.items():
            if key in known:
                setattr(config, key, value)

        return config

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Environment variables override file settings.
    """
    # Start with defaults
    config = Config()

    # Load from file if provided
    if config_path and Path(config_path).exists():
        config = Config.from_file(config_path)

    # Override with environment variables
    env_config = Config.from_env()

    # Merge (env takes precedence for non-default values)
    defaults = Config()
    for f in fields(Config):
        env_val = getattr(env_config, f.name)
        if env_val != getattr(defaults, f.name):
            setattr(config, f.name, env_val)

    return config
