"""
lanbeacon - find a server on the local network by UDP broadcast.
"""

# discovery must load before config (config reads the protocol defaults)
from .discovery import DiscoveryClient, DiscoveryServer
from .config import Config, load_config
from .errors import (
    BindError,
    DiscoveryCancelledError,
    DiscoveryError,
    DiscoveryFailedError,
    DiscoveryTimeoutError,
    NoAdvertisableAddressError,
    ReceiveFailureError,
)

__version__ = '0.1.0'

__all__ = [
    'DiscoveryClient',
    'DiscoveryServer',
    'Config',
    'load_config',
    'BindError',
    'DiscoveryCancelledError',
    'DiscoveryError',
    'DiscoveryFailedError',
    'DiscoveryTimeoutError',
    'NoAdvertisableAddressError',
    'ReceiveFailureError',
]
