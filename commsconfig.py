#!/usr/bin/env python3

__license__ = """
rawcomms
Copyright 2023 Eric V. Smith and Larry Hastings

Permission is hereby granted, free of charge, to any person obtaining a copy of this software and associated documentation files (the "Software"), to deal in the Software without restriction, including without limitation the rights to use, copy, modify, merge, publish, distribute, sublicense, and/or sell copies of the Software, and to permit persons to whom the Software is furnished to do so, subject to the following conditions:

The above copyright notice and this permission notice shall be included in all copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY, FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM, OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE SOFTWARE.
"""

import dataclasses
from dataclasses import dataclass
import perky


METADATA_FORMATS = ("json", "msgpack")


@dataclass(frozen=True)
class CommsConfig:
    """
    Tunables for the frame codec.  None of these
    are part of the wire format; two peers with
    different configs still interoperate.
    """

    # size of the blocks used to read the payload.
    chunk_size: int = 1 << 11

    # peers that pad their metadata block with
    # \x00 bytes need this.  turn it off if your
    # metadata can legitimately end in a null byte.
    trim_null_padding: bool = True

    # if true, a payload cut short by end-of-stream
    # is decoded anyway instead of raising
    # TruncatedTransmissionError.
    allow_truncated_payload: bool = False

    metadata_format: str = "json"

    debug_print: bool = False

    # seconds.  only used by the command-line tool.
    default_timeout: float = 60.0

    def __post_init__(self):
        if self.chunk_size < 1:
            raise ValueError(f"chunk size must be > 0, got {self.chunk_size}")
        if self.metadata_format not in METADATA_FORMATS:
            raise ValueError(f"unknown metadata format {self.metadata_format!r}, expected one of {METADATA_FORMATS}")
        if self.default_timeout <= 0:
            raise ValueError(f"default timeout must be > 0, got {self.default_timeout}")


DEFAULT = CommsConfig()


def _to_bool(s):
    if isinstance(s, bool):
        return s
    lowered = s.strip().lower()
    if lowered in {"true", "yes", "on", "1"}:
        return True
    if lowered in {"false", "no", "off", "0"}:
        return False
    raise ValueError(f"can't interpret {s!r} as a boolean")


_converters = {
    int: int,
    float: float,
    bool: _to_bool,
    str: str,
    }


def from_dict(d):
    """
    Build a CommsConfig from a dict of strings,
    as returned by perky.  Keys may use spaces
    instead of underscores ("chunk size").
    """
    fields = {field.name: field for field in dataclasses.fields(CommsConfig)}
    kwargs = {}
    for key, value in d.items():
        name = key.strip().replace(" ", "_").replace("-", "_")
        field = fields.get(name)
        if not field:
            raise ValueError(f"unknown config setting {key!r}")
        # annotations are real types, this module doesn't use
        # "from __future__ import annotations".
        convert = _converters[field.type]
        try:
            kwargs[name] = convert(value)
        except ValueError as e:
            raise ValueError(f"bad value for config setting {key!r}: {value!r}") from e
    return CommsConfig(**kwargs)


def load(path):
    return from_dict(perky.load(path))
