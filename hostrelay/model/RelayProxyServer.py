"""
HostRelay Proxy Server
Description: HostRelay is a forwarding proxy that routes each plain HTTP
             request to the server named in its Host header and relays the
             response back, refusing requests that would loop back into the
             proxy itself.
"""

import logging
import signal
import socket
import threading
from typing import Optional, Tuple

from .Core.header import RelayConfig, RelayError, Session, SessionState
from .Core.RelayCoordinator import RelayCoordinator
from .Core.RoutingEngine import RoutingEngine
from .Core.StreamReader import StreamReader
from .Core.TemplateStore import TemplateStore

logger = logging.getLogger(__name__)


class RelayProxyServer:
    """
    Accepts client connections and hands each one to its own thread.

    Attributes:
        config (RelayConfig): Listening address, sizing and template settings
        coordinator (RelayCoordinator): Runs each client session
        server_socket (socket): The main server socket
        server_address (tuple): Address actually bound, used to detect self-requests
        client_threads (list): Threads still handling clients
        running (bool): Flag indicating if the server is running
    """

    def __init__(self, config: Optional[RelayConfig] = None, coordinator: Optional[RelayCoordinator] = None):
        self.config = config or RelayConfig()
        self.coordinator = coordinator or RelayCoordinator(
            router=RoutingEngine(),
            reader=StreamReader(self.config.chunk_size),
            templates=TemplateStore(self.config.templates_dir),
            connect_timeout=self.config.connect_timeout,
        )
        self.server_socket = None
        self.server_address: Optional[Tuple[str, int]] = None
        self.client_threads = []
        self.running = False

    def bind(self) -> Tuple[str, int]:
        """
        Create and bind the listening socket.

        Returns:
            The bound (host, port)

        Raises:
            OSError: The address cannot be bound
        """
        # Family follows the configured address, so "::1" gets an IPv6 socket
        family, _, _, _, sockaddr = socket.getaddrinfo(
            self.config.listening_addr,
            self.config.listening_port,
            type=socket.SOCK_STREAM,
            flags=socket.AI_PASSIVE,
        )[0]

        server_socket = socket.socket(family, socket.SOCK_STREAM)
        try:
            server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            server_socket.bind(sockaddr)
            server_socket.listen(self.config.backlog)
        except OSError:
            server_socket.close()
            raise
        # Lets the accept loop notice stop()
        server_socket.settimeout(1)

        self.server_socket = server_socket
        self.server_address = server_socket.getsockname()[:2]
        self.running = True
        logger.info(f"HostRelay listening on {self.server_address[0]}:{self.server_address[1]}")
        return self.server_address

    def handle_connection(self, client_socket: socket.socket, client_addr: Tuple[str, int]):
        """
        Run one session and release the client socket on every path.

        Args:
            client_socket (socket): The socket connected to the client
            client_addr (tuple): The client's address
        """
        session = Session(
            client_socket=client_socket,
            client_addr=client_addr,
            server_address=self.server_address,
        )
        try:
            self.coordinator.handle(session)
        except RelayError as e:
            logger.error(f"Session {session.connection_id} from {client_addr[0]}:{client_addr[1]} failed "
                         f"after {session.elapsed():.3f}s: {type(e).__name__}: {e}")
        except Exception:
            logger.exception(f"Session {session.connection_id} crashed")
        finally:
            session.state = SessionState.CLOSED
            client_socket.close()
            logger.debug(f"Session {session.connection_id} closed after {session.elapsed():.3f}s")

    def serve_forever(self):
        """Accept connections until stop() is called."""
        if self.server_socket is None:
            self.bind()
        server_socket = self.server_socket

        while self.running:
            try:
                client_socket, addr = server_socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self.running:
                    logger.error(f"Socket error: {e}")
                    raise
                break

            logger.debug(f"Accepted connection from {addr[0]}:{addr[1]}")
            # Accepted sockets inherit the listener's timeout
            client_socket.settimeout(None)

            client_handler = threading.Thread(
                target=self.handle_connection,
                args=(client_socket, addr),
                daemon=True,
            )
            client_handler.start()
            self.client_threads.append(client_handler)

            # Clean up finished threads
            self.client_threads = [t for t in self.client_threads if t.is_alive()]

    def signal_handler(self, sig, frame):
        """
        Handle shutdown signals and stop accepting.

        Args:
            sig (int): Signal number
            frame: Current stack frame
        """
        logger.info("Shutting down the server...")
        self.stop()

    def start(self):
        """
        Bind, install signal handlers and serve until stopped.

        Raises:
            OSError: The listening address cannot be bound
        """
        self.bind()

        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGINT, self.signal_handler)
            signal.signal(signal.SIGTERM, self.signal_handler)

        try:
            self.serve_forever()
        finally:
            self.cleanup()

    def stop(self):
        """
        Stop the proxy server gracefully.
        """
        self.running = False
        self.cleanup()

    def cleanup(self):
        """
        Close the listening socket.
        """
        if self.server_socket:
            self.server_socket.close()
            self.server_socket = None
