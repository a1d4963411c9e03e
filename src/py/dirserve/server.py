import asyncio
import errno
import inspect
import socket
import sys
import threading
from dataclasses import dataclass
from email.utils import formatdate
from pathlib import Path
from signal import SIGINT, SIGTERM
from typing import Any, Callable, NamedTuple

from .config import ANNOUNCE_HOST, HOST, LOG_REQUESTS, MAX_HEADER_BYTES, PORT
from .http.model import (
	HTTPBodyWriter,
	HTTPProcessingStatus,
	HTTPRequest,
	HTTPResponse,
)
from .http.parser import HTTPParser
from .model import Handler, ensureHandler
from .utils.limits import unlimit
from .utils.logging import debug, error, event, exception, info, logged, warning


class ServerBindError(Exception):
	"""Raised when the listening socket can't be bound, which is fatal."""

	def __init__(self, host: str, port: int, reason: OSError):
		super().__init__(f"Could not bind to {host}:{port}: {reason.strerror or reason}")
		self.host: str = host
		self.port: int = port
		self.reason: OSError = reason


@dataclass(slots=True)
class ServerState:
	isRunning: bool = True
	# The port the server is bound to, set once listening
	port: int | None = None

	def stop(self) -> None:
		info("Server stopping…")
		self.isRunning = False

	def onException(
		self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]
	) -> None:
		e = context.get("exception")
		if e:
			exception(e)
		else:
			warning("Event loop error", Message=context.get("message"))


class ServerOptions(NamedTuple):
	host: str = HOST
	port: int = PORT
	backlog: int = 10_000
	# This is the polling timeout for accepting new requests, it bounds the
	# time it takes to notice a stop.
	polling: float = 1.0
	readsize: int = 4_096
	# NOTE: There is no idle timeout by default, a connection stays open until
	# the client closes it.
	keepalive: float | None = None
	headerLimit: int = MAX_HEADER_BYTES
	logRequests: bool = LOG_REQUESTS
	condition: Callable[[], bool] | None = None
	stopSignals: bool = True


OPTIONS: ServerOptions = ServerOptions()

SERVER_NOCONTENT: bytes = b"HTTP/1.1 204 No Content\r\nConnection: close\r\n\r\n"
SERVER_BAD_REQUEST: bytes = (
	b"HTTP/1.1 400 Bad Request\r\n"
	b"Content-Type: text/plain; charset=utf-8\r\n"
	b"Content-Length: 11\r\n"
	b"Connection: close\r\n"
	b"\r\n"
	b"Bad Request"
)
SERVER_NOT_IMPLEMENTED: bytes = (
	b"HTTP/1.1 501 Not Implemented\r\n"
	b"Content-Type: text/plain; charset=utf-8\r\n"
	b"Content-Length: 15\r\n"
	b"Connection: close\r\n"
	b"\r\n"
	b"Not Implemented"
)
SERVER_HEADERS_TOO_LARGE: bytes = (
	b"HTTP/1.1 431 Request Header Fields Too Large\r\n"
	b"Content-Type: text/plain; charset=utf-8\r\n"
	b"Content-Length: 31\r\n"
	b"Connection: close\r\n"
	b"\r\n"
	b"Request Header Fields Too Large"
)


class AIOSocketBodyWriter(HTTPBodyWriter):
	"""Specialized body writer to work with AIO sockets."""

	def __init__(
		self,
		client: "socket.socket",
		loop: asyncio.AbstractEventLoop,
	) -> None:
		super().__init__()
		self.client: socket.socket = client
		self.loop: asyncio.AbstractEventLoop = loop

	async def _writeBytes(self, chunk: bytes) -> bool:
		if chunk:
			await self.loop.sock_sendall(self.client, chunk)
		return True

	async def _writeFile(
		self, path: Path, start: int = 0, size: int | None = None
	) -> bool:
		with open(path, "rb") as f:
			await self.loop.sock_sendfile(self.client, f, start, size)
		return True


# NOTE: Based on benchmarks, driving the sockets directly from the event
# loop gave the best performance.
class AIOSocketServer:
	"""AsyncIO backend using sockets directly."""

	@classmethod
	async def OnRequest(
		cls,
		handler: Handler,
		client: socket.socket,
		*,
		loop: asyncio.AbstractEventLoop,
		options: ServerOptions,
	) -> None:
		"""Asynchronous worker, processing the requests sent on a client
		socket until it is closed."""
		size: int = options.readsize
		buffer = bytearray(size)
		keep_alive: bool = True
		iteration: int = 0
		status: HTTPProcessingStatus = HTTPProcessingStatus.Processing
		read_count: int = 0
		res_count: int = 0
		req_count: int = 0
		try:
			parser: HTTPParser = HTTPParser(options.headerLimit)
			writer: AIOSocketBodyWriter = AIOSocketBodyWriter(client, loop)
			# NOTE: A client may sustain a single connection and send all its
			# requests through this loop, until there's `Connection: close`
			# or it closes the socket.
			while keep_alive:
				try:
					n = await asyncio.wait_for(
						loop.sock_recv_into(client, buffer),
						timeout=options.keepalive,
					)
				except asyncio.TimeoutError:
					status = HTTPProcessingStatus.Timeout
					break
				except ConnectionError:
					status = HTTPProcessingStatus.NoData
					break
				if not n:
					# A no-data means a close
					status = HTTPProcessingStatus.NoData
					break
				read_count += n
				if logged(debug):
					debug(
						"Reading Request(s)",
						Client=f"{id(client):x}",
						Read=n,
						Iteration=iteration,
						Count=req_count,
					)
				# NOTE: With HTTP pipelining, we may receive more than one
				# request in the same payload, they're answered in order.
				for atom in parser.feed(bytes(buffer[:n])):
					if isinstance(atom, HTTPRequest):
						req_count += 1
						if options.logRequests:
							event(atom.method, atom.path)
						keep_alive = atom.keepAlive
						res = await cls.SendResponse(atom, handler, writer)
						if res is not None:
							res_count += 1
						if res is None or res.shouldClose:
							keep_alive = False
					elif atom is HTTPProcessingStatus.BadFormat:
						status = atom
						warning("Malformed request", Client=f"{id(client):x}")
						await writer.write(SERVER_BAD_REQUEST)
						keep_alive = False
					elif atom is HTTPProcessingStatus.Unsupported:
						status = atom
						await writer.write(SERVER_NOT_IMPLEMENTED)
						keep_alive = False
					elif atom is HTTPProcessingStatus.TooLarge:
						status = atom
						warning("Request headers too large", Client=f"{id(client):x}")
						await writer.write(SERVER_HEADERS_TOO_LARGE)
						keep_alive = False
					if not keep_alive:
						break
				iteration += 1

			if res_count != req_count:
				warning("Incomplete responses", Requests=req_count, Responses=res_count)
			if read_count and status is HTTPProcessingStatus.NoData and not req_count:
				# TODO: We should extract the client IP
				warning(
					"Client did not feed a complete request",
					ReadCount=read_count,
					Status=status.name,
				)
		except Exception as e:
			exception(e)
		finally:
			# NOTE: The above loop takes care of keep alive, so we always close
			# the connection on exit.
			client.close()

	@staticmethod
	async def SendResponse(
		request: HTTPRequest,
		handler: Handler,
		writer: HTTPBodyWriter,
	) -> HTTPResponse | None:
		"""Processes the request with the handler and sends the response using
		the given writer. Returns `None` when nothing could be sent."""
		req: HTTPRequest = request
		res: HTTPResponse | None = None
		try:
			r = handler.process(req)
			res = await r if inspect.isawaitable(r) else r
		except Exception as e:
			exception(e, f"Handler failed to process {req.method} {req.path}")
			res = req.fail()
		if res is None:
			warning(
				"Handler did not return a response",
				Method=req.method,
				Path=req.path,
			)
			await writer.write(SERVER_NOCONTENT)
			return None
		if res.header("Date") is None:
			res.setHeader("Date", formatdate(usegmt=True))
		if not req.keepAlive:
			res.setHeader("Connection", "close")
		try:
			await writer.write(res.head())
			await writer.write(res.body)
		except (BrokenPipeError, ConnectionResetError):
			# Client did an early close
			res.shouldClose = True
		except Exception as e:
			# The head may be sent already, so the connection can't be reused
			exception(e, f"Failed to send response to {req.method} {req.path}")
			res.shouldClose = True
		return res

	@staticmethod
	def Bind(options: ServerOptions) -> socket.socket:
		"""Creates the listening socket, raising `ServerBindError` when it
		can't be bound. There is no fallback port."""
		server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
		server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
		server.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
		try:
			server.bind((options.host, options.port))
			# The argument is the backlog of connections that will be accepted
			# before they are refused.
			server.listen(options.backlog)
		except OSError as e:
			server.close()
			raise ServerBindError(options.host, options.port, e) from e
		# This is what we need to use it with asyncio
		server.setblocking(False)
		return server

	@classmethod
	async def Serve(
		cls,
		handler: Handler,
		options: ServerOptions = OPTIONS,
		state: ServerState | None = None,
	) -> None:
		"""Main server coroutine."""
		server = cls.Bind(options)
		tasks: set[asyncio.Task[None]] = set()
		loop = asyncio.get_running_loop()

		# Manage server state
		state = ServerState() if state is None else state
		# Registers handlers for signals and exception (so that we log them). Note
		# that we'll get a `set_wakeup_fd only works in main thread of the main interpreter`
		# when this is not run out of the main thread.
		if (
			options.stopSignals
			and threading.current_thread() is threading.main_thread()
		):
			loop.add_signal_handler(SIGINT, state.stop)
			loop.add_signal_handler(SIGTERM, state.stop)
		loop.set_exception_handler(state.onException)

		state.port = server.getsockname()[1]
		await handler.start()
		info(f"serving on http://{ANNOUNCE_HOST}:{state.port}")

		try:
			while state.isRunning:
				if options.condition and not options.condition():
					break
				try:
					client, _ = await asyncio.wait_for(
						loop.sock_accept(server), timeout=options.polling or 1.0
					)
				except asyncio.TimeoutError:
					continue
				except OSError as e:
					if e.errno == errno.EMFILE:
						# Too many open files, we give some time for connections
						# to close.
						await asyncio.sleep(0.1)
					else:
						exception(e)
					continue
				task = loop.create_task(
					cls.OnRequest(handler, client, loop=loop, options=options)
				)
				tasks.add(task)
				task.add_done_callback(tasks.discard)
		finally:
			server.close()
			for task in tasks:
				task.cancel()
			await asyncio.gather(*tasks, return_exceptions=True)
			await handler.stop()


def run(
	handler: Handler | type[Handler],
	*,
	host: str = HOST,
	port: int = PORT,
	backlog: int = OPTIONS.backlog,
	condition: Callable[[], bool] | None = None,
	polling: float = OPTIONS.polling,
	logRequests: bool = OPTIONS.logRequests,
	keepalive: float | None = OPTIONS.keepalive,
	state: ServerState | None = None,
) -> None:
	"""High level function to run the server, blocking until it is stopped.
	Exits the process with a non-zero status when the port can't be bound."""
	unlimit()
	options = ServerOptions(
		host=host,
		port=port,
		backlog=backlog,
		condition=condition,
		polling=polling,
		logRequests=logRequests,
		keepalive=keepalive,
	)
	try:
		asyncio.run(AIOSocketServer.Serve(ensureHandler(handler), options, state))
	except ServerBindError as e:
		error(str(e), "HOSTPORTERR")
		sys.exit(1)
	except KeyboardInterrupt:
		event("ManualShutdown")
	event("EOK")


# EOF
