#!/usr/bin/env python3

__license__ = """
rawcomms
Copyright 2023 Eric V. Smith and Larry Hastings

Permission is hereby granted, free of charge, to any person obtaining a copy of this software and associated documentation files (the "Software"), to deal in the Software without restriction, including without limitation the rights to use, copy, modify, merge, publish, distribute, sublicense, and/or sell copies of the Software, and to permit persons to whom the Software is furnished to do so, subject to the following conditions:

The above copyright notice and this permission notice shall be included in all copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY, FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM, OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE SOFTWARE.
"""

"""
rawcomms
========

    Sends and receives "transmissions": a metadata block
    plus a payload, framed with a fixed-size length header,
    over a connected byte stream.

Quickstart
==========

    import rawcomms
    import socket

    r, w = socket.socketpair()
    rawcomms.send_transmission(w, b"hello", '{"agentname":"x"}')

    t = rawcomms.recv_transmission(r)
    assert t.payload == b"hello"

    # or, with a deadline on every blocking call:
    t = rawcomms.recv_transmission_timeout(5.0, r)

Both directions block.  The codec keeps no state between
calls, but it's not safe to send and receive on the same
connection from two threads at once without a lock of your own.
"""

import base64
import binascii
import contextlib
from dataclasses import dataclass, field
import datetime
import math
import struct

from commsconfig import CommsConfig, DEFAULT
from deadline import (
    Deadline,
    READ,
    SEND,
    TimeoutConfigurationError,
    TransmissionCancelledError,
    TransmissionTimeoutError,
    )
import metadata
from transport import as_transport


__all__ = [
    "CommsConfig",
    "DEFAULT",
    "Deadline",
    "TimeoutConfigurationError",
    "TransmissionCancelledError",
    "TransmissionTimeoutError",
    "SIZE_BLOCK_METADATA",
    "SIZE_BLOCK_PAYLOAD",
    "HEADER_SIZE",
    "METADATA_MAX",
    "NULL_BYTE",
    ]


def export(o):
    __all__.append(o.__name__)
    return o


#
# The wire format
# ---------------
#
# Every transmission looks like this:
#
#    metadata length    2 bytes, unsigned, big-endian
#    payload length     8 bytes, unsigned, big-endian
#    metadata           (metadata length) bytes
#    payload            (payload length) bytes of base64 text
#
# The payload length is the length of the base64 *text*,
# not the length of the payload you passed in.
#
# Some senders pad the metadata block out with \x00 bytes.
# By default we strip trailing \x00s off the metadata we
# receive.  We never pad the metadata we send.
#
# A payload length of zero means there's no payload,
# and we don't read past the metadata.
#

SIZE_BLOCK_METADATA = 1 << 1
SIZE_BLOCK_PAYLOAD = 1 << 3
HEADER_FORMAT = "!HQ"
HEADER_SIZE = SIZE_BLOCK_METADATA + SIZE_BLOCK_PAYLOAD
assert struct.calcsize(HEADER_FORMAT) == HEADER_SIZE

METADATA_MAX = (1 << 16) - 1
PAYLOAD_MAX = (1 << 64) - 1

NULL_BYTE = b"\x00"


@export
class MetadataTooLargeError(ValueError):
    def __init__(self, size, maximum=METADATA_MAX):
        self.size = size
        self.maximum = maximum
        super().__init__(f"metadata size of {size} bytes is too large. max size is {maximum} bytes")


@export
class PayloadDecodeError(ValueError):
    pass


@export
class ShortReadError(ConnectionError):
    """
    The stream ended before we read everything we needed.
    """

    def __init__(self, expected, received, what="bytes"):
        self.expected = expected
        self.received = received
        super().__init__(f"connection closed after {received} of {expected} {what}")


@export
class TruncatedTransmissionError(ShortReadError):
    def __init__(self, expected, received):
        super().__init__(expected, received, "payload bytes")


@export
@dataclass
class Statistics:
    start_time: datetime.datetime = field(default_factory=datetime.datetime.now)
    transmissions_sent: int = 0
    transmissions_received: int = 0
    bytes_written: int = 0
    bytes_read: int = 0


@export
@dataclass
class Transmission:
    metadata_size: int = 0
    payload_size: int = 0
    metadata: bytes = b""
    payload: bytes = b""

    def metadata_text(self, encoding="utf-8"):
        return self.metadata.decode(encoding)

    def record(self, cls):
        """
        Decode the metadata block into cls, a metadata.Record subclass.
        """
        return cls.deserialize(self.metadata)


##
## pure functions: no i/o in here.
##

@export
def pack_header(metadata_size, payload_size):
    if not (0 <= metadata_size <= METADATA_MAX):
        raise MetadataTooLargeError(metadata_size)
    if not (0 <= payload_size <= PAYLOAD_MAX):
        raise ValueError(f"payload size of {payload_size} bytes doesn't fit in {SIZE_BLOCK_PAYLOAD} bytes")
    return struct.pack(HEADER_FORMAT, metadata_size, payload_size)


@export
def unpack_header(b):
    if len(b) < HEADER_SIZE:
        raise ShortReadError(HEADER_SIZE, len(b))
    return struct.unpack(HEADER_FORMAT, b[:HEADER_SIZE])


@export
def metadata_bytes(md, config=DEFAULT):
    """
    Returns md as bytes.  md can be a str (encoded as UTF-8),
    a bytes-like object, a metadata.Record, or None.
    """
    if md is None:
        return b""
    if isinstance(md, str):
        return md.encode("utf-8")
    if isinstance(md, metadata.Record):
        return md.serialize(config.metadata_format)
    return bytes(md)


@export
def trim_metadata(block, config=DEFAULT):
    if not config.trim_null_padding:
        return bytes(block)
    return bytes(block).rstrip(NULL_BYTE)


@export
def encode_frame(payload, md, config=DEFAULT):
    """
    Returns the complete wire representation
    of one transmission, as a bytes object.

    Raises MetadataTooLargeError if md doesn't
    fit in the metadata length field.
    """
    md = metadata_bytes(md, config)
    if len(md) > METADATA_MAX:
        raise MetadataTooLargeError(len(md))

    encoded = base64.b64encode(bytes(payload or b""))
    return b"".join((pack_header(len(md), len(encoded)), md, encoded))


@export
def decode_payload(text, declared_size, config=DEFAULT):
    """
    Turn the base64 payload block back into bytes.

    If text is shorter than declared_size, the stream
    ended early.  That raises TruncatedTransmissionError,
    unless config.allow_truncated_payload is set, in which
    case we try to decode what we got.
    """
    if (len(text) < declared_size) and not config.allow_truncated_payload:
        raise TruncatedTransmissionError(declared_size, len(text))
    try:
        return base64.b64decode(bytes(text), validate=True)
    except binascii.Error as e:
        raise PayloadDecodeError(f"payload isn't valid base64: {e}") from e


@export
def payload_read_attempts(payload_size, config=DEFAULT):
    return math.ceil(payload_size / config.chunk_size)


@export
def serialize(payload, md, config=DEFAULT):
    return encode_frame(payload, md, config)


@export
def deserialize(b, config=DEFAULT):
    """
    Decode one complete frame from the bytes-like object b.
    Bytes past the end of the frame are ignored.
    """
    b = memoryview(b)
    metadata_size, payload_size = unpack_header(b)
    offset = HEADER_SIZE
    block = b[offset:offset + metadata_size]
    if len(block) < metadata_size:
        raise ShortReadError(metadata_size, len(block), "metadata bytes")
    offset += metadata_size
    md = trim_metadata(block, config)
    if not payload_size:
        return Transmission(metadata_size, 0, md, b"")
    text = b[offset:offset + payload_size]
    return Transmission(metadata_size, payload_size, md, decode_payload(text, payload_size, config))


##
## blocking i/o
##

def _call(transport, deadline, operation, fn, *args):
    """
    Make one blocking call on the transport.
    With a deadline, the transport's timeout is set to
    whatever time is left first, so the call itself
    gives up when the deadline passes.

    The transport's timeout never exceeds MAX_WAIT.
    A read that times out before the deadline is
    simply tried again.  (A write can't be: we don't
    know how much of it went out.)
    """
    if deadline is None:
        return fn(*args)

    while True:
        transport.set_timeout(deadline.budget(operation))
        try:
            result = fn(*args)
        except TimeoutError as e:
            if deadline.cancelled:
                raise TransmissionCancelledError(operation) from e
            if (operation == READ) and not deadline.expired:
                continue
            raise TransmissionTimeoutError(operation) from e
        except (OSError, ValueError) as e:
            # aborting a stream can make the blocked call fail
            # in all sorts of ways.  if we did it, say so.
            if deadline.cancelled:
                raise TransmissionCancelledError(operation) from e
            raise
        break
    if deadline.cancelled:
        raise TransmissionCancelledError(operation)
    return result


def _read_exactly(transport, n, deadline, what="bytes"):
    buffer = bytearray()
    while len(buffer) < n:
        chunk = _call(transport, deadline, READ, transport.read, n - len(buffer))
        if not chunk:
            raise ShortReadError(n, len(buffer), what)
        buffer.extend(chunk)
    return bytes(buffer)


def _read_payload(transport, payload_size, config, deadline):
    buffer = bytearray()
    attempts = payload_read_attempts(payload_size, config)
    while len(buffer) < payload_size:
        size = min(config.chunk_size, payload_size - len(buffer))
        try:
            chunk = _call(transport, deadline, READ, transport.read, size)
        except TimeoutError:
            # with a deadline, _call turned this into a
            # TransmissionTimeoutError, and that's final.
            if deadline is not None:
                raise
            # otherwise it's the caller's own socket timeout.
            # tolerate a few of those, then stop reading.
            attempts -= 1
            if attempts <= 0:
                break
            continue
        if not chunk:
            break
        buffer.extend(chunk)
    return buffer


def _bound(conn, deadline, operation):
    """
    Returns (transport, context manager).
    The context manager binds the deadline to the transport's
    abort and restores the transport's timeout afterwards.
    """
    transport = as_transport(conn)
    if deadline is None:
        return transport, contextlib.nullcontext()
    return transport, _DeadlineScope(transport, deadline, operation)


class _DeadlineScope:
    def __init__(self, transport, deadline, operation):
        self.transport = transport
        self.deadline = deadline
        self.operation = operation
        self.binding = deadline.bind(transport.abort)

    def __enter__(self):
        self.previous_timeout = self.transport.get_timeout()
        self.binding.__enter__()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.binding.__exit__(exc_type, exc_value, traceback)
        if self.deadline.cancelled:
            # a cancel that slipped in after the last
            # blocking call still shut the stream down.
            if exc_type is None:
                raise TransmissionCancelledError(self.operation)
            return False
        self.transport.set_timeout(self.previous_timeout)
        return False


@export
def recv_transmission(conn, *, config=DEFAULT, deadline=None, stats=None):
    """
    Read one transmission from conn and return it
    as a Transmission object.

    conn may be a socket, a binary file-like object,
    or a transport.Transport.

    If deadline (a deadline.Deadline) is given, every
    blocking read is bounded by it, and it can be
    cancelled from another thread.

    Raises ShortReadError if the stream ends inside the
    header or the metadata, TruncatedTransmissionError if
    it ends inside the payload, PayloadDecodeError if the
    payload isn't valid base64.  Errors from the stream
    itself are raised unchanged.
    """
    transport, scope = _bound(conn, deadline, READ)
    with scope:
        header = _read_exactly(transport, HEADER_SIZE, deadline, "header bytes")
        metadata_size, payload_size = unpack_header(header)

        if metadata_size:
            block = _read_exactly(transport, metadata_size, deadline, "metadata bytes")
            md = trim_metadata(block, config)
        else:
            md = b""

        bytes_read = HEADER_SIZE + metadata_size
        if not payload_size:
            payload = b""
        else:
            text = _read_payload(transport, payload_size, config, deadline)
            bytes_read += len(text)
            payload = decode_payload(text, payload_size, config)

    if stats is not None:
        stats.transmissions_received += 1
        stats.bytes_read += bytes_read
    if config.debug_print:
        print(f"received {bytes_read} bytes ({metadata_size} metadata, {payload_size} payload)")

    return Transmission(metadata_size, payload_size, md, payload)


@export
def send_transmission(conn, payload, md, *, config=DEFAULT, deadline=None, stats=None):
    """
    Write one transmission to conn.

    payload should be a bytes-like object (or None for no payload).
    md is the metadata: a str, a bytes-like object, or a metadata.Record.

    Raises MetadataTooLargeError, without writing anything,
    if md is more than METADATA_MAX bytes.
    """
    frame = encode_frame(payload, md, config)

    transport, scope = _bound(conn, deadline, SEND)
    with scope:
        _call(transport, deadline, SEND, transport.write, frame)

    n = len(frame)
    if stats is not None:
        stats.transmissions_sent += 1
        stats.bytes_written += n
    if config.debug_print:
        print(f"sent {n} response bytes")


@export
def recv_transmission_timeout(timeout, conn, *, config=DEFAULT, stats=None):
    """
    recv_transmission, but give up after timeout seconds
    with a TransmissionTimeoutError.  timeout may also be a
    datetime.timedelta.  A timeout that isn't > 0 raises
    TimeoutConfigurationError without touching conn.
    """
    deadline = Deadline(timeout)
    return recv_transmission(conn, config=config, deadline=deadline, stats=stats)


@export
def send_transmission_timeout(timeout, conn, payload, md, *, config=DEFAULT, stats=None):
    """
    send_transmission, but give up after timeout seconds
    with a TransmissionTimeoutError.  A timeout that isn't
    > 0 raises TimeoutConfigurationError without touching conn.
    """
    deadline = Deadline(timeout)
    return send_transmission(conn, payload, md, config=config, deadline=deadline, stats=stats)
