import socket

from .header import RelayIOError, Utf8DecodeError


class StreamReader:
    """
    Drains a socket until no more bytes are immediately available.

    A read shorter than ``chunk_size`` is taken as the end of the message, so
    requests and responses must arrive without explicit length framing.
    """

    def __init__(self, chunk_size: int = 1024):
        self.chunk_size = chunk_size

    def read(self, sock: socket.socket) -> str:
        """
        Read the next message off the socket.

        Args:
            sock: Connected socket to read from

        Returns:
            The decoded text, possibly empty if the peer closed straight away

        Raises:
            RelayIOError: The socket read failed
            Utf8DecodeError: A chunk is not valid UTF-8
        """
        result = []

        while True:
            try:
                data = sock.recv(self.chunk_size)
            except OSError as e:
                raise RelayIOError(f"read failed: {e}") from e

            if not data:
                break

            # Chunk boundaries are not character boundaries.
            try:
                result.append(data.decode("utf-8"))
            except UnicodeDecodeError as e:
                raise Utf8DecodeError(f"invalid UTF-8 in chunk: {e}") from e

            if len(data) < self.chunk_size:
                break

        return "".join(result)
