"""
Normalization of client metadata recorded alongside a session row.

Addresses are stored as unsigned integers and user agents as short plain
strings so that the optional tracking columns never hold NULL.
"""

import ipaddress
import logging
import re
from typing import Optional

from sessiondb.db.models.session_record import USER_AGENT_MAX_LENGTH

logger = logging.getLogger(__name__)

_TAG_PATTERN = re.compile(r"<[^>]*>")


def encode_ip(address: Optional[str]) -> int:
    """
    Encode a client address as an unsigned integer.

    IPv4 addresses (and IPv4-mapped IPv6 addresses) become their 32-bit value.
    Anything else, including unparseable input, encodes as 0.
    """
    if not address:
        return 0
    try:
        ip = ipaddress.ip_address(address.strip())
    except ValueError:
        logger.debug("Ignoring unparseable client address")
        return 0
    if isinstance(ip, ipaddress.IPv6Address):
        if ip.ipv4_mapped is None:
            return 0
        ip = ip.ipv4_mapped
    return int(ip)


def decode_ip(value: int) -> str:
    """Render a stored address back to dotted-quad form ('' when not tracked)"""
    if not value:
        return ""
    return str(ipaddress.IPv4Address(value))


def clean_user_agent(user_agent: Optional[str]) -> str:
    """
    Strip markup from a user-agent string and cap it at 255 UTF-8 bytes.

    The cut never splits a multibyte character.
    """
    if not user_agent:
        return ""
    cleaned = _TAG_PATTERN.sub("", user_agent).strip()
    encoded = cleaned.encode("utf-8")
    if len(encoded) <= USER_AGENT_MAX_LENGTH:
        return cleaned
    return encoded[:USER_AGENT_MAX_LENGTH].decode("utf-8", errors="ignore")


def client_address(request, trust_forwarded: bool = False) -> str:
    """
    Address of the client that sent ``request``.

    With ``trust_forwarded`` the first hop of ``X-Forwarded-For`` wins; only
    enable that behind a proxy which overwrites the header.
    """
    if trust_forwarded:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",", 1)[0].strip()
        if first_hop:
            return first_hop
    if request.client is None or not request.client.host:
        return "127.0.0.1"
    return request.client.host
