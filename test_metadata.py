#!/usr/bin/env python3

import json
import msgpack

from metadata import *
import metadata

tests_passed = 0

def success():
    global tests_passed
    tests_passed += 1


def test_records():
    header = TcpHeader("colony", 3, "zikzak")
    status = TcpStatusMessage(404, "not found")

    for record in (header, status, TcpStatusMessage(0), TcpHeader("", 0)):
        for format in ("json", "msgpack"):
            b = record.serialize(format)
            assert type(record).deserialize(b) == record, f"{format}: {b!r}"
            # every record ends in a str, so the null-trimming codec can't eat it.
            assert not b.endswith(b"\x00"), f"{format}: {b!r}"
            success()


def test_json_is_what_peers_send():
    b = TcpHeader("colony", 3, "zikzak").serialize()
    assert json.loads(b) == {"agentname": "colony", "endpoint": 3, "addldata": "zikzak"}
    success()

    b = TcpStatusMessage(200, "ok").serialize("json")
    assert b == b'{"code":200,"message":"ok"}'
    success()

    # an empty message is left out, like the peers do it.
    b = TcpStatusMessage(200).serialize("json")
    assert b == b'{"code":200}'
    assert TcpStatusMessage.deserialize(b) == TcpStatusMessage(200, "")
    success()

    # but MessagePack keeps it, so the block doesn't end in \x00.
    b = TcpStatusMessage(0).serialize("msgpack")
    assert msgpack.loads(b) == {"code": 0, "message": ""}
    assert not b.endswith(b"\x00")
    success()

    # peers may leave fields out, or add fields we don't know about.
    status = TcpStatusMessage.deserialize(b'{"code": 500, "extra": [1, 2]}')
    assert status == TcpStatusMessage(500, "")
    success()

    status = TcpStatusMessage.deserialize(msgpack.dumps({"code": 201, "message": "created"}))
    assert status == TcpStatusMessage(201, "created")
    success()


def test_errors():
    for bad in (b"{not json", b"{\"code\": 1", b"\xc1", b""):
        try:
            TcpStatusMessage.deserialize(bad)
            raise RuntimeError("shouldn't get here!")
        except MetadataFormatError:
            success()

    # a required field is missing
    try:
        TcpHeader.deserialize(b'{"endpoint": 3}')
        raise RuntimeError("shouldn't get here!")
    except MetadataFormatError:
        success()

    # not a map at all
    try:
        TcpHeader.deserialize(msgpack.dumps([1, 2, 3]))
        raise RuntimeError("shouldn't get here!")
    except MetadataFormatError:
        success()

    try:
        TcpHeader("a", 1).serialize("xml")
        raise RuntimeError("shouldn't get here!")
    except ValueError:
        success()

    assert issubclass(MetadataFormatError, ValueError)
    success()


def test_loads():
    assert metadata.loads(b'  {"a": 1}') == {"a": 1}
    assert metadata.loads(msgpack.dumps({"a": 1})) == {"a": 1}
    assert metadata.loads(bytearray(b'{"a": 1}')) == {"a": 1}
    success()


if __name__ == "__main__":
    for name, fn in list(globals().items()):
        if name.startswith("test_") and callable(fn):
            fn()
    print(f"All {tests_passed} metadata tests passed.")
