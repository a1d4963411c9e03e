from typing import Iterator, Literal

from ..config import MAX_HEADER_BYTES
from ..utils.io import LineParser
from .model import (
	HTTPRequest,
	HTTPRequestLine,
	HTTPHeaders,
	HTTPAtom,
	HTTPProcessingStatus,
	TLSHandshake,
	headername,
)

# TLS records start with the handshake content type
TLS_HANDSHAKE: int = 0x16


class MessageParser:
	"""Parses an HTTP request line."""

	__slots__ = ["line", "value", "skipping"]

	def __init__(self) -> None:
		self.line: LineParser = LineParser()
		self.value: HTTPRequestLine | TLSHandshake | None = None
		self.skipping: int = 0

	def flush(self) -> HTTPRequestLine | TLSHandshake | None:
		res = self.value
		self.reset()
		return res

	def reset(self) -> "MessageParser":
		self.line.reset()
		self.value = None
		self.skipping = 0
		return self

	def feed(
		self, chunk: bytes, start: int = 0
	) -> tuple[bool | Literal[False] | None, int]:
		"""Feeds data from chunk, returning `True` when a request line was
		parsed, `False` when the line is malformed and `None` when more data
		is needed, along with the number of bytes read."""
		n = len(chunk)
		available = n - start
		# NOTE: Browsers may try a TLS handshake on a plain HTTP port, the
		# record is skipped.
		if self.skipping:
			read = min(available, self.skipping)
			self.skipping -= read
			return None, read
		elif available >= 5 and chunk[start] == TLS_HANDSHAKE and not self.line.buffer:
			size = 5 + (chunk[start + 3] << 8) + chunk[start + 4]
			self.value = TLSHandshake(size)
			if available >= size:
				return None, size
			else:
				self.skipping = size - available
				return None, available
		else:
			line, read = self.line.feed(chunk, start)
			if line is None:
				return None, read
			elif not line:
				# RFC 9112 §2.2: empty lines before the request line are ignored
				return None, read
			try:
				ln = line.decode("ascii")
			except UnicodeDecodeError:
				return False, read
			parts = ln.split(" ")
			if len(parts) != 3 or not parts[2].startswith("HTTP/") or not parts[0]:
				return False, read
			method, target, protocol = parts
			p: list[str] = target.split("?", 1)
			self.value = HTTPRequestLine(
				method, p[0], p[1] if len(p) > 1 else "", protocol
			)
			return True, read

	def __str__(self) -> str:
		return f"MessageParser({self.value})"


class HeadersParser:
	__slots__ = ["headers", "contentLength", "line", "invalid"]

	def __init__(self) -> None:
		super().__init__()
		self.line: LineParser = LineParser()
		self.headers: dict[str, str] = {}
		self.contentLength: int | None = None
		self.invalid: bool = False

	def flush(self) -> HTTPHeaders:
		res = HTTPHeaders(self.headers, contentLength=self.contentLength)
		self.reset()
		return res

	def reset(self) -> "HeadersParser":
		self.line.reset()
		self.headers = {}
		self.contentLength = None
		self.invalid = False
		return self

	def feed(
		self, chunk: bytes, start: int = 0
	) -> tuple[str | Literal[False] | None, int]:
		"""Feeds data from chunk, starting at `start` offset. Returns
		a value and the next start offset. When the value is `None`, no
		header has been extracted, when the value is `False` it's an empty
		line, and when the value is a string, the named header was added."""
		line, read = self.line.feed(chunk, start)
		if line is None:
			return None, read
		elif not line:
			# An empty line denotes the end of headers
			return False, read
		# Headers are expected to be in Latin-1
		ln: str = line.decode("latin-1")
		i = ln.find(":")
		if i == -1:
			self.invalid = True
			return None, read
		h = ln[:i].lower().strip()
		v = ln[i + 1 :].strip()
		if h == "content-length":
			try:
				self.contentLength = int(v)
			except ValueError:
				self.invalid = True
			else:
				if self.contentLength < 0:
					self.invalid = True
		n: str = headername(h)
		self.headers[n] = v
		return n, read

	def __str__(self) -> str:
		return f"HeadersParser({self.headers})"


class BodyLengthParser:
	"""Skips over the body of a request with `Content-Length` set. Request
	bodies are never used, so they're counted and discarded."""

	__slots__ = ["expected", "read"]

	def __init__(self) -> None:
		self.expected: int = 0
		self.read: int = 0

	def reset(self, length: int = 0) -> "BodyLengthParser":
		self.expected = length
		self.read = 0
		return self

	def feed(self, chunk: bytes, start: int = 0) -> tuple[bool | None, int]:
		"""Returns `True` once the expected length has been read, `None`
		otherwise, along with the number of bytes consumed."""
		to_read: int = min(len(chunk) - start, self.expected - self.read)
		self.read += to_read
		return (True if self.read >= self.expected else None), to_read


class HTTPParser:
	"""A stateful, incremental HTTP request parser. Chunks can be split at
	any boundary, and a single chunk may contain several (pipelined)
	requests. The request line and headers of a request can't take more
	than `headerLimit` bytes."""

	def __init__(self, headerLimit: int = MAX_HEADER_BYTES) -> None:
		self.message: MessageParser = MessageParser()
		self.headers: HeadersParser = HeadersParser()
		self.bodyLength: BodyLengthParser = BodyLengthParser()
		self.parser: MessageParser | HeadersParser | BodyLengthParser = self.message
		self.requestLine: HTTPRequestLine | None = None
		self.requestHeaders: HTTPHeaders | None = None
		self.headerLimit: int = headerLimit
		self.headerSize: int = 0

	def reset(self) -> "HTTPParser":
		self.parser = self.message.reset()
		self.headers.reset()
		self.bodyLength.reset()
		self.requestLine = None
		self.requestHeaders = None
		self.headerSize = 0
		return self

	def feed(self, chunk: bytes) -> Iterator[HTTPAtom]:
		size: int = len(chunk)
		offset: int = 0
		while offset < size:
			# The expectation here is that when we feed a chunk and it's
			# partially read, we don't need to re-feed it again. The underlying
			# parser will keep a buffer up until it is flushed.
			ln, read = self.parser.feed(chunk, offset)
			offset += read
			if self.parser is not self.bodyLength:
				self.headerSize += read
				if self.headerSize > self.headerLimit:
					# The partial line buffers are dropped along with the request
					yield HTTPProcessingStatus.TooLarge
					self.reset()
					return
			if ln is None:
				continue
			elif self.parser is self.message:
				line = self.message.flush()
				if ln is False or not isinstance(line, HTTPRequestLine):
					yield HTTPProcessingStatus.BadFormat
					self.reset()
					return
				self.requestLine = line
				self.requestHeaders = None
				yield line
				self.parser = self.headers
			elif self.parser is self.headers:
				if ln is not False:
					# `ln` is going to be the header name as a string there.
					continue
				invalid: bool = self.headers.invalid
				headers = self.headers.flush()
				self.requestHeaders = headers
				yield headers
				if invalid:
					yield HTTPProcessingStatus.BadFormat
					self.reset()
					return
				elif "Transfer-Encoding" in headers.headers:
					# Chunked request bodies are not supported
					yield HTTPProcessingStatus.Unsupported
					self.reset()
					return
				elif headers.contentLength:
					self.parser = self.bodyLength.reset(headers.contentLength)
					yield HTTPProcessingStatus.Body
				else:
					# RFC 9112 §6.3: no length means no body for requests
					yield self.makeRequest()
			elif self.parser is self.bodyLength:
				yield self.makeRequest()
			else:
				raise RuntimeError(f"Unsupported parser: {self.parser}")

	def makeRequest(self) -> HTTPRequest:
		line = self.requestLine
		headers = self.requestHeaders
		if line is None or headers is None:
			raise RuntimeError("Request line and headers must be parsed first")
		res = HTTPRequest(
			method=line.method,
			path=line.path,
			rawQuery=line.query,
			headers=headers,
			protocol=line.protocol,
		)
		self.reset()
		return res


# EOF
