#!/usr/bin/env python3

__license__ = """
rawcomms
Copyright 2023 Eric V. Smith and Larry Hastings

Permission is hereby granted, free of charge, to any person obtaining a copy of this software and associated documentation files (the "Software"), to deal in the Software without restriction, including without limitation the rights to use, copy, modify, merge, publish, distribute, sublicense, and/or sell copies of the Software, and to permit persons to whom the Software is furnished to do so, subject to the following conditions:

The above copyright notice and this permission notice shall be included in all copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY, FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM, OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE SOFTWARE.
"""

"""
Deadlines for blocking transmissions.

A Deadline isn't checked once and forgotten.
The codec hands deadline.remaining() to the
transport before *every* blocking read or write,
so the blocking call itself gives up when time
runs out.

A Deadline can also be cancelled, from any thread.
Cancelling calls the abort function bound by
the operation currently in flight, which knocks
the blocked read or write loose.  (For a socket,
that means shutting it down.  Once you cancel a
transmission halfway through a frame, the stream
is garbage anyway.)
"""

import contextlib
import datetime
import threading
import time


__all__ = ["MAX_WAIT", "READ", "SEND"]


def export(o):
    __all__.append(o.__name__)
    return o


READ = "read"
SEND = "send"

# no single blocking call waits longer than this.
# sockets reject huge timeouts, but the deadline
# itself may be as long as you like, even infinite.
MAX_WAIT = 24 * 60 * 60.0


@export
class TimeoutConfigurationError(ValueError):
    pass


@export
class TransmissionTimeoutError(TimeoutError):
    def __init__(self, operation):
        self.operation = operation
        super().__init__(f"{operation} transmission timeout")


@export
class TransmissionCancelledError(Exception):
    def __init__(self, operation):
        self.operation = operation
        super().__init__(f"{operation} has been cancelled")


@export
def validate_timeout(timeout):
    """
    Returns timeout as a float number of seconds.
    timeout may be an int, a float, or a
    datetime.timedelta.  Raises
    TimeoutConfigurationError if it isn't > 0.
    """
    if isinstance(timeout, datetime.timedelta):
        timeout = timeout.total_seconds()
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
        raise TimeoutConfigurationError(f"timeout must be a number of seconds, got {timeout!r}")
    if not (timeout > 0):
        raise TimeoutConfigurationError("timeout must be > 0")
    return float(timeout)


@export
class Deadline:
    def __init__(self, timeout):
        self.timeout = validate_timeout(timeout)
        self.expires_at = time.monotonic() + self.timeout
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._abort = None

    def __repr__(self):
        return f"<Deadline timeout={self.timeout} remaining={self.remaining():.6f} cancelled={self.cancelled}>"

    def remaining(self):
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self):
        return time.monotonic() >= self.expires_at

    @property
    def cancelled(self):
        return self._cancelled.is_set()

    def cancel(self):
        """
        Cancel the operation bound to this deadline.
        Safe to call from any thread, and more than once.

        abort() runs with the lock held, so once bind()
        has let go of an operation, cancelling can't
        touch its stream anymore.
        """
        with self._lock:
            self._cancelled.set()
            if self._abort is not None:
                self._abort()

    @contextlib.contextmanager
    def bind(self, abort):
        """
        Context manager.  While active, cancel() calls abort().
        If we were cancelled before binding, abort() gets
        called right away.
        """
        with self._lock:
            if self._abort is not None:
                raise RuntimeError(f"{self!r} is already bound to an operation")
            self._abort = abort
            cancelled = self.cancelled
        if cancelled:
            abort()
        try:
            yield self
        finally:
            with self._lock:
                self._abort = None

    def check(self, operation):
        """
        Raise if the operation shouldn't (or can't) continue.
        Cancellation beats expiry.
        """
        if self.cancelled:
            raise TransmissionCancelledError(operation)
        if self.expired:
            raise TransmissionTimeoutError(operation)

    def budget(self, operation):
        """
        Returns the number of seconds the next blocking
        call may take, at most MAX_WAIT.  Raises if
        there's no time left.
        """
        self.check(operation)
        remaining = self.remaining()
        if remaining <= 0:
            raise TransmissionTimeoutError(operation)
        return min(remaining, MAX_WAIT)
