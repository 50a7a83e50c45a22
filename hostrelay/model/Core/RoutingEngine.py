import logging
import re
import socket
from typing import Callable, Optional

from .header import HostTarget, NoHostFound, PortParseError, ResolutionError, ResolvedAddress

logger = logging.getLogger(__name__)

_PORT_RE = re.compile(r"\+?[0-9]+")


class RoutingEngine:
    """Finds where a raw request should go."""

    def __init__(self, resolver: Optional[Callable] = None):
        self.resolver = resolver or socket.getaddrinfo

    def extract_host(self, request: str) -> HostTarget:
        """
        Pull the host specifier out of the first line starting with ``Host``.

        Args:
            request: Raw request text

        Returns:
            HostTarget with port 80 when the specifier has no port

        Raises:
            NoHostFound: No Host line, an empty host, or more than one ':'
            PortParseError: The port is not an unsigned 16-bit integer
        """
        host_line = next((line for line in request.split("\n") if line.startswith("Host")), None)
        if host_line is None:
            raise NoHostFound("request has no Host line")

        fields = host_line.split()
        if not fields:
            raise NoHostFound("Host line is empty")

        # IPv6 literals land here as well; bracketed hosts are not supported.
        parts = fields[-1].split(":")
        if len(parts) == 1:
            host, port = parts[0], 80
        elif len(parts) == 2:
            host, port = parts[0], self._parse_port(parts[1])
        else:
            raise NoHostFound(f"cannot split host specifier {fields[-1]!r}")

        if not host:
            raise NoHostFound(f"empty host in specifier {fields[-1]!r}")
        return HostTarget(host=host, port=port)

    def _parse_port(self, text: str) -> int:
        if not _PORT_RE.fullmatch(text):
            raise PortParseError(f"invalid port {text!r}")
        port = int(text)
        if port > 65535:
            raise PortParseError(f"port out of range {text!r}")
        return port

    def resolve(self, target: HostTarget) -> Optional[ResolvedAddress]:
        """
        Resolve a target and keep only the first address.

        Returns None when resolution succeeds with no addresses.

        Raises:
            ResolutionError: The resolver failed
        """
        try:
            results = self.resolver(target.host, target.port, type=socket.SOCK_STREAM)
        except (OSError, UnicodeError) as e:
            raise ResolutionError(f"cannot resolve {target}: {e}") from e

        for result in results:
            sockaddr = result[4]
            logger.debug(f"Resolved {target} to {sockaddr[0]}")
            return ResolvedAddress(ip=sockaddr[0], port=sockaddr[1])
        return None
