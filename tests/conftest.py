import asyncio
import http.client
import sys
import threading
import time
from pathlib import Path
from typing import Any, Iterator, NamedTuple

import pytest

# Tests run against the sources, whether or not the package is installed
sys.path.insert(0, str(Path(__file__).parent.parent / "src" / "py"))

from dirserve.http.model import HTTPRequest  # noqa: E402
from dirserve.http.parser import HTTPParser  # noqa: E402
from dirserve.model import Handler  # noqa: E402
from dirserve.server import AIOSocketServer, ServerOptions, ServerState  # noqa: E402
from dirserve.services.files import FileService  # noqa: E402


class Fetched(NamedTuple):
	status: int
	headers: dict[str, str]
	body: bytes


def makeRequest(
	path: str, method: str = "GET", headers: dict[str, str] | None = None
) -> HTTPRequest:
	"""Builds a request the way the server does, by parsing its bytes."""
	lines = [f"{method} {path} HTTP/1.1", "Host: localhost"]
	lines += [f"{k}: {v}" for k, v in (headers or {}).items()]
	payload = ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")
	requests = [_ for _ in HTTPParser().feed(payload) if isinstance(_, HTTPRequest)]
	assert len(requests) == 1
	return requests[0]


def connect(port: int) -> http.client.HTTPConnection:
	return http.client.HTTPConnection("127.0.0.1", port, timeout=5.0)


def fetch(
	port: int,
	path: str,
	method: str = "GET",
	headers: dict[str, str] | None = None,
	connection: http.client.HTTPConnection | None = None,
) -> Fetched:
	"""Sends a request, on a new connection unless one is given."""
	conn = connection or connect(port)
	try:
		conn.request(method, path, headers=headers or {})
		res = conn.getresponse()
		body = res.read()
		return Fetched(res.status, dict(res.getheaders()), body)
	finally:
		if connection is None:
			conn.close()


class ServerThread:
	"""Runs the server loop in a background thread, on an ephemeral port."""

	def __init__(self, handler: Handler, **options: Any) -> None:
		self.handler = handler
		self.state = ServerState()
		self.options = ServerOptions(
			host="127.0.0.1", port=0, polling=0.05, stopSignals=False, **options
		)
		self.thread = threading.Thread(target=self.main, daemon=True)

	def main(self) -> None:
		asyncio.run(AIOSocketServer.Serve(self.handler, self.options, self.state))

	@property
	def port(self) -> int:
		assert self.state.port is not None
		return self.state.port

	def start(self) -> "ServerThread":
		self.thread.start()
		deadline = time.monotonic() + 5.0
		while self.state.port is None:
			if time.monotonic() > deadline or not self.thread.is_alive():
				raise RuntimeError("Server did not start")
			time.sleep(0.01)
		return self

	def stop(self) -> None:
		self.state.stop()
		self.thread.join(5.0)

	def connect(self) -> http.client.HTTPConnection:
		return connect(self.port)

	def fetch(
		self,
		path: str,
		method: str = "GET",
		headers: dict[str, str] | None = None,
		connection: http.client.HTTPConnection | None = None,
	) -> Fetched:
		return fetch(self.port, path, method, headers, connection)


@pytest.fixture
def root(tmp_path: Path) -> Path:
	"""A small tree to serve."""
	(tmp_path / "hello.txt").write_bytes(b"hi")
	(tmp_path / "a.txt").write_text("0123456789abcdefghij")
	(tmp_path / "sub").mkdir()
	(tmp_path / "sub" / "nested.json").write_text('{"ok": true}')
	(tmp_path / "site").mkdir()
	(tmp_path / "site" / "index.html").write_text("<h1>Site</h1>")
	return tmp_path


@pytest.fixture
def service(root: Path) -> FileService:
	return FileService(root)


@pytest.fixture
def server(service: FileService) -> Iterator[ServerThread]:
	thread = ServerThread(service).start()
	try:
		yield thread
	finally:
		thread.stop()


# EOF
