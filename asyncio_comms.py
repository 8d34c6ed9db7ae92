#!/usr/bin/env python3

__license__ = """
rawcomms
Copyright 2023 Eric V. Smith and Larry Hastings

Permission is hereby granted, free of charge, to any person obtaining a copy of this software and associated documentation files (the "Software"), to deal in the Software without restriction, including without limitation the rights to use, copy, modify, merge, publish, distribute, sublicense, and/or sell copies of the Software, and to permit persons to whom the Software is furnished to do so, subject to the following conditions:

The above copyright notice and this permission notice shall be included in all copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY, FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM, OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE SOFTWARE.
"""

import asyncio

from commsconfig import DEFAULT
from deadline import Deadline, READ, SEND, TransmissionCancelledError, TransmissionTimeoutError
from rawcomms import (
    HEADER_SIZE,
    ShortReadError,
    Transmission,
    decode_payload,
    encode_frame,
    trim_metadata,
    unpack_header,
    )


async def _readexactly(reader, n, what):
    try:
        return await reader.readexactly(n)
    except asyncio.IncompleteReadError as e:
        raise ShortReadError(n, len(e.partial), what) from e


async def _recv(reader, config, stats):
    header = await _readexactly(reader, HEADER_SIZE, "header bytes")
    metadata_size, payload_size = unpack_header(header)

    if metadata_size:
        md = trim_metadata(await _readexactly(reader, metadata_size, "metadata bytes"), config)
    else:
        md = b""

    bytes_read = HEADER_SIZE + metadata_size
    payload = b""
    if payload_size:
        text = bytearray()
        while len(text) < payload_size:
            chunk = await reader.read(min(config.chunk_size, payload_size - len(text)))
            if not chunk:
                break
            text.extend(chunk)
        bytes_read += len(text)
        payload = decode_payload(text, payload_size, config)

    if stats is not None:
        stats.transmissions_received += 1
        stats.bytes_read += bytes_read
    if config.debug_print:
        print(f"received {bytes_read} bytes ({metadata_size} metadata, {payload_size} payload)")

    return Transmission(metadata_size, payload_size, md, payload)


async def run_with_deadline(deadline, operation, fn, *args):
    """
    Await fn(*args), bounded by deadline.

    asyncio.timeout cancels the await itself when time
    runs out, so this is a real deadline.  deadline.cancel()
    may be called from any thread; it cancels this task,
    and we report that as TransmissionCancelledError.
    Anybody else cancelling this task gets the usual
    CancelledError.

    If fn finishes before the cancel reaches the task,
    we still raise TransmissionCancelledError, and the
    queued cancel is dropped.  It must never go off
    later, in the caller's own code.
    """
    task = asyncio.current_task()
    loop = asyncio.get_running_loop()
    in_flight = True

    def cancel_task():
        if in_flight:
            task.cancel()

    def abort():
        loop.call_soon_threadsafe(cancel_task)

    try:
        with deadline.bind(abort):
            async with asyncio.timeout(deadline.remaining()):
                result = await fn(*args)
    except TimeoutError as e:
        if deadline.cancelled:
            raise TransmissionCancelledError(operation) from e
        raise TransmissionTimeoutError(operation) from e
    except asyncio.CancelledError:
        if not deadline.cancelled:
            raise
        task.uncancel()
        raise TransmissionCancelledError(operation) from None
    finally:
        in_flight = False
    if deadline.cancelled:
        raise TransmissionCancelledError(operation)
    return result


async def recv_transmission(reader, *, config=DEFAULT, deadline=None, stats=None):
    """
    Read one transmission from an asyncio.StreamReader.
    Same rules as rawcomms.recv_transmission.
    """
    if deadline is None:
        return await _recv(reader, config, stats)
    return await run_with_deadline(deadline, READ, _recv, reader, config, stats)


async def send_transmission(writer, payload, md, *, config=DEFAULT, deadline=None, stats=None):
    """
    Write one transmission to an asyncio.StreamWriter.
    Same rules as rawcomms.send_transmission.
    """
    # encode up front, so MetadataTooLargeError
    # never leaves anything in the writer's buffer.
    frame = encode_frame(payload, md, config)
    if deadline is None:
        await _write(writer, frame)
    else:
        await run_with_deadline(deadline, SEND, _write, writer, frame)

    n = len(frame)
    if stats is not None:
        stats.transmissions_sent += 1
        stats.bytes_written += n
    if config.debug_print:
        print(f"sent {n} response bytes")


async def _write(writer, frame):
    writer.write(frame)
    await writer.drain()


async def recv_transmission_timeout(timeout, reader, *, config=DEFAULT, stats=None):
    deadline = Deadline(timeout)
    return await recv_transmission(reader, config=config, deadline=deadline, stats=stats)


async def send_transmission_timeout(timeout, writer, payload, md, *, config=DEFAULT, stats=None):
    deadline = Deadline(timeout)
    return await send_transmission(writer, payload, md, config=config, deadline=deadline, stats=stats)
