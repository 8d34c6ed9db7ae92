#!/usr/bin/env python3

__license__ = """
rawcomms
Copyright 2023 Eric V. Smith and Larry Hastings

Permission is hereby granted, free of charge, to any person obtaining a copy of this software and associated documentation files (the "Software"), to deal in the Software without restriction, including without limitation the rights to use, copy, modify, merge, publish, distribute, sublicense, and/or sell copies of the Software, and to permit persons to whom the Software is furnished to do so, subject to the following conditions:

The above copyright notice and this permission notice shall be included in all copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY, FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM, OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE SOFTWARE.
"""

import big.all as big
import socket


class Transport:
    """
    The byte stream a transmission travels over.

    The codec only needs five things from a stream:
    read some bytes, write all the bytes, get and set
    a timeout for the next blocking call, and abort
    a blocked call from another thread.
    """

    @big.pure_virtual()
    def read(self, n):
        """
        Read at most n bytes.  Returns b'' at end of stream.
        Raises TimeoutError if the timeout elapses first.
        """
        ...

    @big.pure_virtual()
    def write(self, b):
        """
        Write all of b, or raise.
        """
        ...

    @big.pure_virtual()
    def get_timeout(self):
        ...

    @big.pure_virtual()
    def set_timeout(self, timeout):
        """
        timeout is a float number of seconds, or None for "block forever".
        """
        ...

    @big.pure_virtual()
    def abort(self):
        """
        Unblock any read or write in progress.
        Called from another thread.
        """
        ...


class SocketTransport(Transport):
    def __init__(self, sock):
        self.sock = sock

    def __repr__(self):
        return f"{type(self).__name__}({self.sock!r})"

    def read(self, n):
        return self.sock.recv(n)

    def write(self, b):
        # sendall raises if it can't send everything.
        # the timeout covers the whole call, not each chunk.
        self.sock.sendall(b)
        return len(b)

    def get_timeout(self):
        return self.sock.gettimeout()

    def set_timeout(self, timeout):
        self.sock.settimeout(timeout)

    def abort(self):
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # already closed, or never connected.
            # either way, nothing is blocked on it.
            pass


class StreamTransport(Transport):
    """
    Wraps a binary file-like object, like io.BytesIO.
    Reads from an in-memory stream never block,
    so the timeout is recorded but otherwise ignored.
    """

    def __init__(self, f):
        self.f = f
        self.timeout = None

    def __repr__(self):
        return f"{type(self).__name__}({self.f!r})"

    def read(self, n):
        return self.f.read(n)

    def write(self, b):
        view = memoryview(b)
        while view:
            n = self.f.write(view)
            if n is None:
                # non-blocking raw stream with nowhere to put the bytes.
                raise BlockingIOError(f"couldn't write to {self.f!r}")
            view = view[n:]
        flush = getattr(self.f, "flush", None)
        if flush:
            flush()
        return len(b)

    def get_timeout(self):
        return self.timeout

    def set_timeout(self, timeout):
        self.timeout = timeout

    def abort(self):
        self.f.close()


def as_transport(conn):
    """
    Returns a Transport for conn.
    conn may be a Transport, a socket,
    or a binary file-like object.
    """
    if isinstance(conn, Transport):
        return conn
    if isinstance(conn, socket.socket):
        return SocketTransport(conn)
    if hasattr(conn, "read") and hasattr(conn, "write"):
        return StreamTransport(conn)
    raise TypeError(f"don't know how to transmit over {conn!r}")
