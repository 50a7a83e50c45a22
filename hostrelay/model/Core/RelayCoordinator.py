import logging
import socket
from typing import Callable, Optional

from .header import (
    NoHostFound,
    RelayIOError,
    ResolvedAddress,
    SelfRequested,
    Session,
    SessionState,
)
from .RoutingEngine import RoutingEngine
from .StreamReader import StreamReader
from .TemplateStore import TemplateStore

logger = logging.getLogger(__name__)

LOOP_TEMPLATE = "error508"


class RelayCoordinator:
    """
    Drives one client session: read, route, guard against self-requests,
    relay to the upstream and back.

    Attributes:
        router (RoutingEngine): Extracts and resolves the request's host
        reader (StreamReader): Drains client and upstream sockets
        templates (TemplateStore): Source of the canned loop-detected response
        connect (callable): Opens upstream connections, socket.create_connection by default
        connect_timeout (float): Upstream connect timeout, None waits forever
    """

    def __init__(
        self,
        router: Optional[RoutingEngine] = None,
        reader: Optional[StreamReader] = None,
        templates: Optional[TemplateStore] = None,
        connect: Callable = socket.create_connection,
        connect_timeout: Optional[float] = None,
    ):
        self.router = router or RoutingEngine()
        self.reader = reader or StreamReader()
        self.templates = templates or TemplateStore()
        self.connect = connect
        self.connect_timeout = connect_timeout

    def handle(self, session: Session):
        """
        Run a full request/response exchange for the session.

        The client socket is left open; closing it belongs to the caller.

        Raises:
            RelayError: Any failed step, SelfRequested after the canned response was sent
        """
        session.state = SessionState.READING
        session.request = self.reader.read(session.client_socket)

        session.state = SessionState.ROUTING
        target = self.router.extract_host(session.request)
        address = self.router.resolve(target)
        if address is None:
            raise NoHostFound(f"{target} resolved to no addresses")
        session.state = SessionState.RESOLVED

        if address.as_tuple() == tuple(session.server_address[:2]):
            session.state = SessionState.LOOPED
            self._send_loop_detected(session)
            raise SelfRequested(f"{target} resolves to this proxy ({address})")

        session.state = SessionState.RELAYING
        self._relay(session, address)

    def _send_loop_detected(self, session: Session):
        response = self.templates.load(LOOP_TEMPLATE)
        self._send(session.client_socket, response, "client")

    def _relay(self, session: Session, address: ResolvedAddress):
        logger.info(f"Forwarding request to {address}")

        try:
            upstream = self.connect(address.as_tuple(), self.connect_timeout)
        except OSError as e:
            raise RelayIOError(f"connect to {address} failed: {e}") from e

        with upstream:
            self._send(upstream, session.request, "upstream")
            response = self.reader.read(upstream)

        self._send(session.client_socket, response, "client")

    def _send(self, sock: socket.socket, text: str, peer: str):
        try:
            sock.sendall(text.encode("utf-8"))
        except OSError as e:
            raise RelayIOError(f"write to {peer} failed: {e}") from e
