"""
Discovery Module - Server Discovery on LAN

A client broadcasts a request on a well-known UDP port; any listening
server answers with the address it advertises.
"""

from .protocol import (
    BROADCAST_ADDRESS,
    DISCOVERY_PORT,
    DISCOVERY_REPLY,
    DISCOVERY_REQUEST,
    MAX_PACKET_SIZE,
    decode_reply,
    decode_request,
    encode_reply,
    encode_request,
)
from .address import (
    LocalAddress,
    describe_address,
    enumerate_local_addresses,
    resolve_advertised_address,
    select_address,
)
from .server import DiscoveryServer, ServerState
from .client import DiscoveryClient

__all__ = [
    'BROADCAST_ADDRESS',
    'DISCOVERY_PORT',
    'DISCOVERY_REPLY',
    'DISCOVERY_REQUEST',
    'MAX_PACKET_SIZE',
    'decode_reply',
    'decode_request',
    'encode_reply',
    'encode_request',
    'LocalAddress',
    'describe_address',
    'enumerate_local_addresses',
    'resolve_advertised_address',
    'select_address',
    'DiscoveryServer',
    'ServerState',
    'DiscoveryClient',
]
