#!/usr/bin/env python3

import dataclasses
import os
import tempfile

import commsconfig
from commsconfig import CommsConfig

tests_passed = 0

def success():
    global tests_passed
    tests_passed += 1


def load_text(text):
    fd, path = tempfile.mkstemp(suffix=".pky")
    try:
        with os.fdopen(fd, "wt") as f:
            f.write(text)
        return commsconfig.load(path)
    finally:
        os.unlink(path)


def test_defaults():
    c = commsconfig.DEFAULT
    assert c.chunk_size == 2048
    assert c.trim_null_padding
    assert not c.allow_truncated_payload
    assert c.metadata_format == "json"
    assert not c.debug_print
    assert c.default_timeout == 60.0
    success()

    try:
        c.chunk_size = 5
        raise RuntimeError("shouldn't get here!")
    except dataclasses.FrozenInstanceError:
        success()


def test_validation():
    for kwargs in (
        dict(chunk_size=0),
        dict(metadata_format="xml"),
        dict(default_timeout=0),
        ):
        try:
            CommsConfig(**kwargs)
            raise RuntimeError("shouldn't get here!")
        except ValueError:
            success()


def test_from_dict():
    c = commsconfig.from_dict({
        "chunk size": "512",
        "allow-truncated-payload": "yes",
        "trim_null_padding": "off",
        "metadata format": "msgpack",
        "default timeout": "2.5",
        })
    assert c == CommsConfig(
        chunk_size=512,
        allow_truncated_payload=True,
        trim_null_padding=False,
        metadata_format="msgpack",
        default_timeout=2.5,
        )
    success()

    assert commsconfig.from_dict({}) == commsconfig.DEFAULT
    success()

    for bad in ({"chunk size": "lots"}, {"debug print": "maybe"}, {"color": "blue"}):
        try:
            commsconfig.from_dict(bad)
            raise RuntimeError("shouldn't get here!")
        except ValueError:
            success()


def test_load():
    c = load_text("chunk size = 4096\ndebug print = true\n")
    assert c.chunk_size == 4096
    assert c.debug_print
    assert c.metadata_format == "json"
    success()

    here = os.path.dirname(os.path.abspath(__file__))
    c = commsconfig.load(os.path.join(here, "rawcomms.pky"))
    assert c == commsconfig.DEFAULT
    success()


if __name__ == "__main__":
    for name, fn in list(globals().items()):
        if name.startswith("test_") and callable(fn):
            fn()
    print(f"All {tests_passed} config tests passed.")
