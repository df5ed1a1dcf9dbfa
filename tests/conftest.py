import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from fetch_ics import UpstreamConfig

MOSCOW_ICS = (
    "BEGIN:VCALENDAR\r\n"
    "VERSION:2.0\r\n"
    "BEGIN:VTIMEZONE\r\n"
    "TZID:Europe/Moscow\r\n"
    "END:VTIMEZONE\r\n"
    "BEGIN:VEVENT\r\n"
    "SUMMARY:Linear algebra\r\n"
    "DTSTART:20230101T090000\r\n"
    "DTEND:20230101T100000\r\n"
    "END:VEVENT\r\n"
    "END:VCALENDAR\r\n"
)


class StubUpstream:
    """Local stand-in for the schedule host.

    `routes` maps a path to (status, body, delay); unknown paths answer 404.
    Every request's path and User-Agent are recorded in `requests`.
    """

    def __init__(self):
        self.routes = {}
        self.requests = []
        stub = self

        class Handler(BaseHTTPRequestHandler):
            def do_GET(self):
                stub.requests.append((self.path, self.headers.get("User-Agent")))
                status, body, delay = stub.routes.get(self.path, (404, "not found", 0))
                time.sleep(delay)
                data = body if isinstance(body, bytes) else body.encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "text/calendar; charset=utf-8")
                self.send_header("Content-Length", str(len(data)))
                self.end_headers()
                self.wfile.write(data)

            def log_message(self, format, *args):
                pass

        self.httpd = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        self.thread = threading.Thread(target=self.httpd.serve_forever, daemon=True)

    @property
    def config(self):
        port = self.httpd.server_address[1]
        return UpstreamConfig(url_template=f"http://127.0.0.1:{port}/study_groups/{{id}}/schedule.ics")

    def serve(self, id, body, status=200, delay=0):
        self.routes[f"/study_groups/{id}/schedule.ics"] = (status, body, delay)


@pytest.fixture
def upstream():
    stub = StubUpstream()
    stub.thread.start()
    yield stub
    stub.httpd.shutdown()
    stub.httpd.server_close()


@pytest.fixture
def moscow_ics():
    return MOSCOW_ICS


@pytest.fixture(autouse=True)
def no_proxy(monkeypatch):
    # the stub upstream lives on loopback
    for name in ("http_proxy", "HTTP_PROXY", "https_proxy", "HTTPS_PROXY", "all_proxy", "ALL_PROXY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("no_proxy", "127.0.0.1,localhost")
