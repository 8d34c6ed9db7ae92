#!/usr/bin/env python3

import appeal
import commsconfig
import metadata
import rawcomms
import socket
import sys


app = appeal.Appeal()


def load_config(path):
    if not path:
        return commsconfig.DEFAULT
    return commsconfig.load(path)


def show(transmission):
    print(f"metadata ({transmission.metadata_size} bytes): {transmission.metadata!r}")
    print(f"payload ({len(transmission.payload)} bytes, {transmission.payload_size} on the wire): {transmission.payload!r}")


def exchange(host, port, payload, md, timeout, config):
    with socket.create_connection((host, port), timeout=timeout) as sock:
        # create_connection left a timeout on the socket.
        # from here on the deadline is in charge.
        sock.settimeout(None)
        rawcomms.send_transmission_timeout(timeout, sock, payload, md, config=config)
        return rawcomms.recv_transmission_timeout(timeout, sock, config=config)


def reply(conn, address, status, timeout, config, stats):
    try:
        rawcomms.send_transmission_timeout(timeout, conn, None, status, config=config, stats=stats)
    except (ConnectionError, rawcomms.TransmissionTimeoutError) as e:
        print(f"{address}: couldn't reply: {e}")


def serve(conn, address, timeout, config, stats):
    """
    Handle one client: print its transmission
    and reply with a status message.  Nothing
    the client does can take the listener down.
    """
    try:
        transmission = rawcomms.recv_transmission_timeout(timeout, conn, config=config, stats=stats)
    except rawcomms.TransmissionTimeoutError:
        print(f"{address}: timeout")
        return
    except (ConnectionError, ValueError) as e:
        print(f"{address}: {e}")
        reply(conn, address, metadata.TcpStatusMessage(400, str(e)), timeout, config, stats)
        return
    print(f"{address}:")
    show(transmission)
    reply(conn, address, metadata.TcpStatusMessage(200, "ok"), timeout, config, stats)


@app.command()
def listen(port: int, *, host='127.0.0.1', timeout=0.0, count=0, config=''):
    """
    Accept connections on port.  Print the transmission
    each client sends, then reply with a status message.
    If count is nonzero, exit after that many clients.
    """
    config = load_config(config)
    timeout = timeout or config.default_timeout
    stats = rawcomms.Statistics()
    handled = 0

    with socket.create_server((host, port)) as server:
        print(f"listening on {host}:{port}")
        while (not count) or (handled < count):
            conn, address = server.accept()
            handled += 1
            with conn:
                serve(conn, address, timeout, config, stats)

    print(stats)


@app.command()
def send(host, port: int, *, metadata='', file='', data='', timeout=0.0, config=''):
    """
    Send one transmission to host:port and print the reply.
    The payload is the contents of file, or data, or nothing.
    """
    config = load_config(config)
    timeout = timeout or config.default_timeout
    if file:
        with open(file, "rb") as f:
            payload = f.read()
    else:
        payload = data.encode("utf-8")

    try:
        show(exchange(host, port, payload, metadata, timeout, config))
    except rawcomms.TransmissionTimeoutError:
        print("timeout")
    except rawcomms.MetadataTooLargeError as e:
        sys.exit(str(e))


@app.command()
def ping(host, port: int, *, agentname='rawdog', timeout=0.0, config=''):
    config = load_config(config)
    timeout = timeout or config.default_timeout
    header = metadata.TcpHeader(agentname, 0, "ping")
    try:
        reply = exchange(host, port, None, header, timeout, config)
    except rawcomms.TransmissionTimeoutError:
        print("timeout")
        return
    print(reply.record(metadata.TcpStatusMessage))


def main():
    app.main()


if __name__ == "__main__":
    main()
