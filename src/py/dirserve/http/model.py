from abc import ABC, abstractmethod
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import (
	Any,
	Iterator,
	NamedTuple,
	TypeAlias,
	Union,
)

from ..utils.io import DEFAULT_ENCODING, asBytes
from .api import ResponseFactory
from .status import HTTP_NO_BODY, HTTP_STATUS

# -----------------------------------------------------------------------------
#
# HELPERS
#
# -----------------------------------------------------------------------------


# Header names come from clients, so only the most recent ones are kept
HEADER_NAMES_CACHE: int = 256


@lru_cache(maxsize=HEADER_NAMES_CACHE)
def headername(name: str) -> str:
	"""Normalizes the header name as `Kebab-Case`."""
	return "-".join(_.capitalize() for _ in name.split("-"))


# -----------------------------------------------------------------------------
#
# DATA MODEL
#
# -----------------------------------------------------------------------------


class TLSHandshake(NamedTuple):
	"""Represents a (skipped) TLS handshake record"""

	size: int


class HTTPRequestLine(NamedTuple):
	"""Represents a request status line"""

	method: str
	path: str
	query: str
	protocol: str


class HTTPHeaders(NamedTuple):
	"""Wraps HTTP headers, keeping key information for response/request processing."""

	headers: dict[str, str]
	contentType: str | None = None
	contentLength: int | None = None


class HTTPProcessingStatus(Enum):
	"""Internal parser/processor state management"""

	Processing = 0
	Body = 1
	Complete = 2
	Timeout = 10
	NoData = 11
	BadFormat = 12
	Unsupported = 13
	TooLarge = 14


# Type alias for the parser would produce
HTTPAtom: TypeAlias = Union[
	HTTPRequestLine,
	TLSHandshake,
	HTTPHeaders,
	HTTPProcessingStatus,
	"HTTPRequest",
]

# -----------------------------------------------------------------------------
#
# BODY
#
# -----------------------------------------------------------------------------


class HTTPBodyBlob(NamedTuple):
	"""Represents a part (or a whole) body as bytes."""

	payload: bytes = b""
	length: int = 0

	@staticmethod
	def FromBytes(data: bytes) -> "HTTPBodyBlob":
		return HTTPBodyBlob(payload=data, length=len(data))


class HTTPBodyFile(NamedTuple):
	"""Represents an HTTP body from a file, or a slice of it when `start`
	and `size` are given."""

	path: Path
	start: int = 0
	size: int | None = None

	@property
	def length(self) -> int:
		return (
			self.path.stat().st_size - self.start if self.size is None else self.size
		)


class HTTPBodyStream(NamedTuple):
	"""An HTTP body that is generated from a stream of bytes and file
	slices, the length of which is known upfront."""

	stream: Iterator[bytes | HTTPBodyFile]
	length: int


# The different types of bodies that are managed
THTTPBody: TypeAlias = HTTPBodyBlob | HTTPBodyFile | HTTPBodyStream


# -----------------------------------------------------------------------------
#
# WRITER
#
# -----------------------------------------------------------------------------


class HTTPBodyWriter(ABC):
	"""A generic writer for bodies, implemented by the transports."""

	async def write(self, body: THTTPBody | bytes | None) -> bool:
		"""Writes the given type of body."""
		if isinstance(body, bytes):
			return await self._writeBytes(body)
		elif isinstance(body, HTTPBodyBlob):
			return await self._writeBytes(body.payload)
		elif isinstance(body, HTTPBodyFile):
			return await self._writeFile(body.path, body.start, body.size)
		elif isinstance(body, HTTPBodyStream):
			for _ in body.stream:
				if isinstance(_, HTTPBodyFile):
					await self._writeFile(_.path, _.start, _.size)
				else:
					await self._writeBytes(_)
			return True
		elif body is None:
			return True
		else:
			raise ValueError(f"Unsupported body format: {body}")

	async def _writeFile(
		self, path: Path, start: int = 0, size: int | None = None
	) -> bool:
		chunk_size: int = 64_000
		left: int | None = size
		with open(path, "rb") as f:
			f.seek(start)
			while left is None or left > 0:
				chunk = f.read(chunk_size if left is None else min(left, chunk_size))
				if not chunk:
					break
				if left is not None:
					left -= len(chunk)
				await self._writeBytes(chunk)
		return True

	@abstractmethod
	async def _writeBytes(self, chunk: bytes) -> bool: ...


# -----------------------------------------------------------------------------
#
# REQUESTS
#
# -----------------------------------------------------------------------------


class HTTPRequest(ResponseFactory["HTTPResponse"]):
	"""Represents an HTTP requests, which also acts as a factory for
	responses."""

	__slots__ = ["protocol", "method", "path", "rawQuery", "_headers"]

	def __init__(
		self,
		method: str,
		path: str,
		headers: HTTPHeaders,
		protocol: str = "HTTP/1.1",
		rawQuery: str = "",
	):
		super().__init__()
		self.method: str = method
		# NOTE: The path is kept as sent (percent-encoded), decoding is up
		# to the handler.
		self.path: str = path
		self.rawQuery: str = rawQuery
		self.protocol: str = protocol
		self._headers: HTTPHeaders = headers

	@property
	def headers(self) -> dict[str, str]:
		return self._headers.headers

	def header(self, name: str) -> str | None:
		return self._headers.headers.get(headername(name))

	@property
	def keepAlive(self) -> bool:
		"""Tells if the connection can be reused after this request."""
		# NOTE: HTTP/1.0 keep-alive is not negotiated, these connections
		# are closed after the response.
		return (
			self.protocol != "HTTP/1.0"
			and (self.header("Connection") or "").lower() != "close"
		)

	def respond(
		self,
		content: Any = None,
		contentType: str | None = None,
		contentLength: int | None = None,
		status: int = 200,
		headers: dict[str, str] | None = None,
		message: str | None = None,
	) -> "HTTPResponse":
		return HTTPResponse.Create(
			status=status,
			message=message,
			content=content,
			contentType=contentType,
			contentLength=contentLength,
			protocol=self.protocol,
			headers=headers,
		)

	def __str__(self) -> str:
		return f"Request({self.method} {self.path}{f'?{self.rawQuery}' if self.rawQuery else ''} {self.headers})"


# -----------------------------------------------------------------------------
#
# RESPONSE
#
# -----------------------------------------------------------------------------


class HTTPResponse:
	"""An HTTP response."""

	@staticmethod
	def Create(
		content: Any = None,
		contentType: str | None = None,
		contentLength: int | None = None,
		headers: dict[str, str] | None = None,
		status: int = 200,
		message: str | None = None,
		protocol: str = "HTTP/1.1",
	) -> "HTTPResponse":
		"""Factory method to create HTTP response objects."""
		body: THTTPBody | None = None
		if content is None:
			pass
		elif isinstance(content, str) or isinstance(content, bytes):
			payload: bytes = asBytes(content)
			body = HTTPBodyBlob.FromBytes(payload)
		elif isinstance(content, Path):
			body = HTTPBodyFile(content.absolute())
		elif isinstance(content, HTTPBodyFile) or isinstance(content, HTTPBodyStream):
			body = content
		else:
			raise ValueError(f"Unsupported content {type(content)}:{content}")
		if contentLength is None and body is not None:
			contentLength = body.length
		res_headers: dict[str, str] = {headername(k): v for k, v in (headers or {}).items()}
		if contentType is not None:
			res_headers["Content-Type"] = contentType
		if contentLength is not None:
			res_headers["Content-Length"] = str(contentLength)
		elif status not in HTTP_NO_BODY and "Content-Length" not in res_headers:
			res_headers["Content-Length"] = "0"
		return HTTPResponse(
			status=status,
			message=message or HTTP_STATUS.get(status, "Unknown status"),
			headers=HTTPHeaders(
				res_headers,
				contentType=res_headers.get("Content-Type"),
				contentLength=contentLength,
			),
			body=body,
			protocol=protocol,
		)

	__slots__ = [
		"protocol",
		"status",
		"message",
		"headers",
		"body",
		"shouldClose",
	]

	def __init__(
		self,
		protocol: str,
		status: int,
		message: str | None,
		headers: HTTPHeaders,
		body: THTTPBody | None = None,
		shouldClose: bool = False,
	):
		self.protocol: str = protocol
		self.status: int = status
		self.message: str | None = message
		self.headers: HTTPHeaders = headers
		self.body: THTTPBody | None = body
		self.shouldClose: bool = shouldClose

	def header(self, name: str) -> str | None:
		return self.headers.headers.get(headername(name))

	def setHeader(self, name: str, value: str | int | None) -> "HTTPResponse":
		if value is None:
			self.headers.headers.pop(headername(name), None)
		else:
			self.headers.headers[headername(name)] = str(value)
		return self

	def strip(self) -> "HTTPResponse":
		"""Drops the body while keeping the headers, as expected for
		responses to `HEAD` requests."""
		self.body = None
		return self

	def head(self) -> bytes:
		"""Serializes the head as a payload."""
		message: str = self.message or HTTP_STATUS.get(self.status, "Unknown status")
		lines: list[str] = [f"{self.protocol} {self.status} {message}"]
		lines += [f"{headername(k)}: {v}" for k, v in self.headers.headers.items()]
		lines.append("")
		lines.append("")
		# NOTE: Header values are expected to be Latin-1, which covers the
		# percent-encoded locations we produce.
		return "\r\n".join(lines).encode("latin-1", errors="replace")

	@property
	def text(self) -> str | None:
		"""Returns the body as text when it is held in memory."""
		if isinstance(self.body, HTTPBodyBlob):
			return self.body.payload.decode(DEFAULT_ENCODING, errors="replace")
		return None

	def __str__(self) -> str:
		return f"Response({self.protocol} {self.status} {self.message} {self.headers} {self.body})"


# EOF
