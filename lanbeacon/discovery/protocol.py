"""
Discovery Wire Protocol

Design Decision: Message Format
===============================

Options Considered:
1. JSON - Self describing, easy to extend
2. Plain ASCII tokens - What existing servers and clients already speak
3. Tagged binary (family byte + packed address)

Decision: Plain ASCII tokens, no framing
- The whole UDP payload IS the message
- Request: "Where-are-you?"
- Reply:   "FOO_SERVER_IP " + dotted-quad address
- Compatible with deployed peers, so the format is frozen

Receive buffers are fixed-size, so a payload may carry trailing NUL
padding. Every decode trims it before comparing against a token.

Known limitation: the reply has no address-family tag. Only IPv4
literals are advertised (see address.select_address); an IPv6 reply
would need a protocol extension, not a silent format change.
"""

from typing import Optional

# Port used for broadcast and listening
DISCOVERY_PORT = 8888

# String the client sends, to tell discovery traffic apart from noise
DISCOVERY_REQUEST = "Where-are-you?"

# Prefix the server sends ahead of its address (note the trailing space)
DISCOVERY_REPLY = "FOO_SERVER_IP "

# How much data to accept in one datagram
MAX_PACKET_SIZE = 16000

# Widest broadcast target
BROADCAST_ADDRESS = "255.255.255.255"

_PADDING = "\x00 \t\r\n"


def _to_text(data: bytes) -> str:
    return data.decode('ascii', errors='replace')


def encode_request(token: str = DISCOVERY_REQUEST) -> bytes:
    """Encode a discovery request payload."""
    return token.encode('ascii')


def decode_request(data: bytes, token: str = DISCOVERY_REQUEST) -> bool:
    """
    Check whether a payload is a discovery request.

    The payload matches when, once padding is trimmed, it starts with the
    request token. Trailing data after the token is allowed.

    Args:
        data: Raw datagram payload (may include NUL padding)
        token: Expected request token

    Returns:
        True if the payload is a discovery request
    """
    message = _to_text(data).strip(_PADDING)
    return message.startswith(token)


def encode_reply(address: str, prefix: str = DISCOVERY_REPLY) -> bytes:
    """Encode a reply advertising ``address``."""
    return (prefix + address).encode('ascii')


def decode_reply(data: bytes, prefix: str = DISCOVERY_REPLY) -> Optional[str]:
    """
    Extract the server address from a reply payload.

    Args:
        data: Raw datagram payload (may include NUL padding)
        prefix: Expected reply prefix

    Returns:
        The advertised address, or None if the prefix is not in the payload
    """
    reply = _to_text(data)
    k = reply.find(prefix)
    if k < 0:
        return None
    return reply[k + len(prefix):].strip(_PADDING)
