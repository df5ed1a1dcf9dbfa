#!/usr/bin/env python3
"""
icstz_server.py
---------------
Relays study group schedules with their timezones fixed.

    GET /fix?id=<study group id>

fetches the upstream ICS, binds every bare DTSTART/DTEND to the calendar's
TZID and returns it. Runs until SIGINT/SIGTERM, then gives in-flight
requests a few seconds to finish.

Usage:
    python3 icstz_server.py <PORT>
"""

import logging
import os
import re
import signal
import sys
import threading
from socketserver import ThreadingMixIn
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer

import falcon
from falcon import Request, Response

from fetch_ics import FetchError, UpstreamConfig, fetch_ics
from fix_ics_timezone import normalize

log = logging.getLogger(__name__)

SHUTDOWN_GRACE_SECONDS = 5.0
INT_RE = re.compile(r'[+-]?[0-9]+')


class FixResource:
    def __init__(self, config: UpstreamConfig):
        self.config = config

    def on_get(self, req: Request, resp: Response):
        resp.content_type = falcon.MEDIA_TEXT
        idstr = req.get_param('id')
        if idstr is None:
            resp.status = falcon.HTTP_400
            resp.text = 'id not found in URL params\n'
            return
        if not INT_RE.fullmatch(idstr):
            resp.status = falcon.HTTP_400
            resp.text = f'id is not an int: {idstr}\n'
            return

        try:
            # int() still refuses digit strings past the interpreter limit
            group_id = int(idstr)
        except ValueError:
            resp.status = falcon.HTTP_400
            resp.text = f'id is not an int: {idstr}\n'
            return

        try:
            ics = fetch_ics(group_id, self.config)
        except FetchError as e:
            log.error("%s", e)
            resp.status = falcon.HTTP_400
            resp.text = f'{e}\n'
            return

        resp.status = falcon.HTTP_200
        resp.content_type = 'text/calendar; charset=utf-8'
        resp.text = normalize(ics)

    def on_options(self, req: Request, resp: Response):
        raise falcon.HTTPMethodNotAllowed(['GET'])


def create_app(config: UpstreamConfig) -> falcon.App:
    app = falcon.App()
    app.add_route('/fix', FixResource(config))
    return app


class QuietHandler(WSGIRequestHandler):

    def log_message(self, format, *args):
        # Route access logs through our logger instead of stderr
        log.info("%s - %s", self.address_string(), format % args)


class ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    """WSGI server with a thread per request and an in-flight counter."""

    daemon_threads = True
    block_on_close = False

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._in_flight = 0
        self._idle = threading.Condition()

    def process_request(self, request, client_address):
        with self._idle:
            self._in_flight += 1
        super().process_request(request, client_address)

    def process_request_thread(self, request, client_address):
        try:
            super().process_request_thread(request, client_address)
        finally:
            with self._idle:
                self._in_flight -= 1
                self._idle.notify_all()

    def wait_idle(self, timeout: float) -> bool:
        with self._idle:
            return self._idle.wait_for(lambda: self._in_flight == 0, timeout)


def make_server(port: int, config: UpstreamConfig, host: str = '') -> ThreadingWSGIServer:
    server = ThreadingWSGIServer((host, port), QuietHandler)
    server.set_app(create_app(config))
    return server


def serve_until(server: ThreadingWSGIServer, stop: threading.Event,
                grace: float = SHUTDOWN_GRACE_SECONDS) -> bool:
    """
    Serve until `stop` is set, then stop accepting, wait up to `grace`
    seconds for in-flight requests and close the socket.
    Returns False if requests were still running when the window closed.
    """
    thread = threading.Thread(target=server.serve_forever, name='icstz-server', daemon=True)
    log.info("starting server on port %s", server.server_port)
    thread.start()
    stop.wait()

    log.info("shutdown requested, draining for up to %.0fs", grace)
    server.shutdown()
    thread.join()
    drained = server.wait_idle(grace)
    server.server_close()
    if drained:
        log.info("server closed")
    else:
        log.error("requests still in flight after %.0fs, closing anyway", grace)
    return drained


def usage(prog: str):
    print(f"Usage: python3 {prog} <PORT>", file=sys.stderr)
    print("provide port", file=sys.stderr)


def main(argv=None) -> int:
    argv = sys.argv if argv is None else argv
    prog = os.path.basename(argv[0]) if argv else 'icstz_server.py'
    if len(argv) < 2:
        usage(prog)
        return 1
    try:
        port = int(argv[1])
    except ValueError:
        usage(prog)
        return 1

    logging.basicConfig(
        level=os.environ.get('ICSTZ_LOG_LEVEL', 'INFO').upper(),
        format='%(asctime)s %(levelname)s %(message)s',
    )

    server = make_server(port, UpstreamConfig.from_env())
    stop = threading.Event()

    def on_signal(signum, frame):
        log.info("%s received. Shutting down the server.", signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGINT, on_signal)
    signal.signal(signal.SIGTERM, on_signal)

    return 0 if serve_until(server, stop) else 1


if __name__ == "__main__":
    sys.exit(main())
