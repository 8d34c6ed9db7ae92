#!/usr/bin/env python3

__license__ = """
rawcomms
Copyright 2023 Eric V. Smith and Larry Hastings

Permission is hereby granted, free of charge, to any person obtaining a copy of this software and associated documentation files (the "Software"), to deal in the Software without restriction, including without limitation the rights to use, copy, modify, merge, publish, distribute, sublicense, and/or sell copies of the Software, and to permit persons to whom the Software is furnished to do so, subject to the following conditions:

The above copyright notice and this permission notice shall be included in all copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY, FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM, OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE SOFTWARE.
"""

"""
Records that travel in the metadata block.

The codec doesn't care what's in the metadata block.
But the peers we talk to put JSON objects in there,
so here are the two they use.  We can also write
them with MessagePack, for peers that speak it.

Careful with MessagePack and null padding: the codec
strips trailing \\x00 bytes by default, and MessagePack
encodes the integer 0 as a single \\x00 byte.  That's
why every record here ends with a str field.
"""

import dataclasses
from dataclasses import dataclass
import json
import msgpack


__all__ = ["MetadataFormatError", "Record", "TcpHeader", "TcpStatusMessage"]


class MetadataFormatError(ValueError):
    pass


@dataclass
class Record:
    # fields left out of the JSON when they're empty.
    # MessagePack always gets every field, so it still ends in a str.
    omit_empty = ()

    def to_dict(self):
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, d):
        if not isinstance(d, dict):
            raise MetadataFormatError(f"expected a map for {cls.__name__}, got {d!r}")
        names = {field.name for field in dataclasses.fields(cls)}
        # ignore fields we don't know about, like Go's json.Unmarshal does.
        try:
            return cls(**{key: value for key, value in d.items() if key in names})
        except TypeError as e:
            raise MetadataFormatError(f"can't build {cls.__name__} from {d!r}") from e

    def serialize(self, format="json"):
        if format == "json":
            d = {key: value for key, value in self.to_dict().items() if value or (key not in self.omit_empty)}
            return json.dumps(d, separators=(",", ":")).encode("utf-8")
        if format == "msgpack":
            return msgpack.dumps(self.to_dict())
        raise ValueError(f"unknown metadata format {format!r}")

    @classmethod
    def deserialize(cls, b):
        return cls.from_dict(loads(b))


@dataclass
class TcpHeader(Record):
    agentname: str
    endpoint: int
    addldata: str = ""


@dataclass
class TcpStatusMessage(Record):
    code: int
    message: str = ""

    omit_empty = ("message",)


def loads(b):
    """
    Decode a metadata block written by Record.serialize.
    JSON objects start with '{' (possibly after whitespace);
    anything else is assumed to be MessagePack.
    """
    b = bytes(b)
    if b.lstrip()[:1] == b"{":
        try:
            return json.loads(b.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MetadataFormatError(f"metadata isn't valid JSON: {e}") from e
    try:
        return msgpack.loads(b)
    except (ValueError, msgpack.UnpackException) as e:
        raise MetadataFormatError(f"metadata isn't valid MessagePack: {e}") from e
