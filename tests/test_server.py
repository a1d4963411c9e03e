import os
import socket
import subprocess  # nosec
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from conftest import ServerThread, fetch
from dirserve.server import ServerBindError, run
from dirserve.services.files import FileService

SOURCES: Path = Path(__file__).parent.parent / "src" / "py"


def test_announces_address(service: FileService, capsys: pytest.CaptureFixture[str]):
	server = ServerThread(service).start()
	try:
		assert server.fetch("/hello.txt").status == 200
	finally:
		server.stop()
	err = capsys.readouterr().err
	assert err.count(f"serving on http://localhost:{server.port}") == 1


def test_file(server: ServerThread):
	res = server.fetch("/hello.txt")
	assert res.status == 200
	assert res.body == b"hi"
	assert res.headers["Content-Type"] == "text/plain; charset=utf-8"
	assert "Date" in res.headers


def test_listing(server: ServerThread):
	res = server.fetch("/")
	assert res.status == 200
	assert b"a.txt" in res.body
	assert b"sub/" in res.body


def test_not_found(server: ServerThread):
	res = server.fetch("/does-not-exist")
	assert res.status == 404
	assert res.body == b"Not Found"


def test_traversal(server: ServerThread, root: Path):
	(root.parent / "secret.txt").write_text("secret")
	for path in ("/../../etc/passwd", "/../secret.txt", "/%2e%2e/secret.txt"):
		res = server.fetch(path)
		assert res.status in (403, 404)
		assert b"secret" not in res.body


def test_head(server: ServerThread):
	res = server.fetch("/a.txt", "HEAD")
	assert res.status == 200
	assert res.headers["Content-Length"] == "20"
	assert res.body == b""


def test_range(server: ServerThread):
	res = server.fetch("/a.txt", headers={"Range": "bytes=10-"})
	assert res.status == 206
	assert res.body == b"abcdefghij"
	assert res.headers["Content-Range"] == "bytes 10-19/20"


def test_multiple_ranges(server: ServerThread):
	res = server.fetch("/a.txt", headers={"Range": "bytes=0-2,5-6"})
	assert res.status == 206
	assert len(res.body) == int(res.headers["Content-Length"])
	assert b"\r\n\r\n012\r\n" in res.body
	assert b"\r\n\r\n56\r\n" in res.body


def test_keep_alive(server: ServerThread):
	conn = server.connect()
	try:
		for path, body in (("/hello.txt", b"hi"), ("/a.txt", b"0123456789abcdefghij")):
			res = server.fetch(path, connection=conn)
			assert res.status == 200
			assert res.body == body
		assert server.fetch("/missing", connection=conn).status == 404
		assert server.fetch("/hello.txt", connection=conn).body == b"hi"
	finally:
		conn.close()


def test_pipelining(server: ServerThread):
	with socket.create_connection(("127.0.0.1", server.port), timeout=5.0) as s:
		s.sendall(
			b"GET /hello.txt HTTP/1.1\r\nHost: localhost\r\n\r\n"
			b"GET /hello.txt HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n"
		)
		data = b""
		while chunk := s.recv(4096):
			data += chunk
	assert data.count(b"HTTP/1.1 200 OK\r\n") == 2
	assert data.endswith(b"\r\n\r\nhi")
	assert b"Connection: close\r\n" in data


def test_bad_request(server: ServerThread):
	with socket.create_connection(("127.0.0.1", server.port), timeout=5.0) as s:
		s.sendall(b"garbage\r\n\r\n")
		data = b""
		while chunk := s.recv(4096):
			data += chunk
	assert data.startswith(b"HTTP/1.1 400 Bad Request\r\n")


def test_headers_too_large(service: FileService):
	server = ServerThread(service, headerLimit=1024).start()
	try:
		with socket.create_connection(("127.0.0.1", server.port), timeout=5.0) as s:
			s.sendall(b"GET /hello.txt HTTP/1.1\r\nX-Padding: " + b"x" * 2048)
			data = b""
			while chunk := s.recv(4096):
				data += chunk
	finally:
		server.stop()
	assert data.startswith(b"HTTP/1.1 431 Request Header Fields Too Large\r\n")
	assert b"Connection: close\r\n" in data


def test_range_with_non_ascii_digits(server: ServerThread):
	res = server.fetch("/a.txt", headers={"Range": "bytes=\u00b2-"})
	assert res.status == 416
	assert res.headers["Content-Range"] == "bytes */20"
	# The server keeps serving
	assert server.fetch("/hello.txt").body == b"hi"


def test_handler_failure_is_a_server_error(server: ServerThread, service: FileService):
	def fail(*args):
		raise RuntimeError("Failure")

	service.renderFile = fail  # type: ignore[method-assign]
	assert server.fetch("/hello.txt").status == 500
	# The server keeps serving
	assert server.fetch("/").status == 200


def test_concurrent_requests(server: ServerThread, root: Path):
	count: int = 32
	contents: dict[str, bytes] = {}
	for i in range(count):
		data = os.urandom(64_000 + i * 1_000)
		(root / f"file-{i}.bin").write_bytes(data)
		contents[f"/file-{i}.bin"] = data
	with ThreadPoolExecutor(max_workers=count) as executor:
		results = dict(
			zip(contents, executor.map(server.fetch, contents))
		)
	for path, res in results.items():
		assert res.status == 200
		assert res.body == contents[path]


def test_bind_conflict_exits(service: FileService, capsys: pytest.CaptureFixture[str]):
	with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as holder:
		holder.bind(("127.0.0.1", 0))
		holder.listen(1)
		port = holder.getsockname()[1]
		with pytest.raises(SystemExit) as e:
			run(service, host="127.0.0.1", port=port)
	assert e.value.code == 1
	err = capsys.readouterr().err
	assert "HOSTPORTERR" in err
	assert "serving on" not in err


def test_bind_error_carries_address():
	e = ServerBindError("0.0.0.0", 8080, OSError(98, "Address already in use"))
	assert str(e) == "Could not bind to 0.0.0.0:8080: Address already in use"
	assert e.port == 8080


def portIsFree(port: int) -> bool:
	with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
		try:
			s.bind(("0.0.0.0", port))  # nosec: B104
		except OSError:
			return False
	return True


@pytest.mark.skipif(not portIsFree(8080), reason="Port 8080 is in use")
def test_process(root: Path):
	"""Starts the server as a process in the served directory, then a second
	one that can't bind the same port."""
	env = dict(os.environ, PYTHONPATH=str(SOURCES), NO_COLOR="1")
	command = [sys.executable, "-m", "dirserve"]
	first = subprocess.Popen(  # nosec
		command, cwd=root, env=env, stdout=subprocess.PIPE, stderr=subprocess.PIPE
	)
	try:
		deadline = time.monotonic() + 10.0
		while True:
			try:
				socket.create_connection(("127.0.0.1", 8080), timeout=1.0).close()
				break
			except OSError:
				if time.monotonic() > deadline or first.poll() is not None:
					raise
				time.sleep(0.05)
		fetched = fetch(8080, "/hello.txt")
		assert fetched.status == 200
		assert fetched.body == b"hi"
		second = subprocess.run(  # nosec
			command, cwd=root, env=env, capture_output=True, timeout=10.0
		)
		assert second.returncode != 0
		assert b"serving on" not in second.stderr + second.stdout
		assert b"HOSTPORTERR" in second.stderr
	finally:
		first.terminate()
		_, err = first.communicate(timeout=10.0)
	lines = [_ for _ in err.decode().splitlines() if "serving on" in _]
	assert lines == ["[dirserve] serving on http://localhost:8080"]


# EOF
