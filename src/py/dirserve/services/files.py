import posixpath
import secrets
from datetime import timezone
from email.utils import formatdate, parsedate_to_datetime
from pathlib import Path
from urllib.parse import quote, unquote

from ..http.model import HTTPBodyFile, HTTPBodyStream, HTTPRequest, HTTPResponse
from ..http.ranges import ByteRange, RangeNotSatisfiable, parseRange, rangesLength
from ..model import Handler
from ..utils.files import contentType as getContentType
from ..utils.htmpl import H, Node, html
from ..utils.logging import debug, logged

FILE_CSS: str = """
:root {
    font-family: sans-serif;
    font-size: 14px;
    line-height: 1.35em;
    padding: 20px;
    background: #F0F0F0;
}
h1 {
margin-top: 1.75em;
margin-bottom: 1.75em;
line-height:1.25em;
}

h2 {
margin-top: 1.25em;
}

ul {
    padding: 0px 20px;
    margin: 1.25em 0em;
}

li {
    padding: 0px 10px;
    margin: 0.5em 0em;
}
"""

INDEX_PAGE: str = "index.html"
METHODS: list[str] = ["GET", "HEAD"]


def cleanPath(path: str) -> str | None:
	"""Resolves the `.`, `..` and empty segments of an absolute URL path,
	keeping a trailing slash. Returns `None` when `..` segments climb above
	the root."""
	parts: list[str] = []
	for segment in path.split("/"):
		if segment in ("", "."):
			continue
		elif segment == "..":
			if not parts:
				return None
			parts.pop()
		else:
			parts.append(segment)
	cleaned: str = "/" + "/".join(parts)
	return f"{cleaned}/" if parts and path.endswith("/") else cleaned


def parseDate(value: str | None) -> int | None:
	"""Parses an HTTP date as a UNIX timestamp in seconds, returning `None`
	when the value is absent or invalid."""
	if not value:
		return None
	try:
		date = parsedate_to_datetime(value)
	except (TypeError, ValueError, IndexError):
		return None
	if date.tzinfo is None:
		date = date.replace(tzinfo=timezone.utc)
	return int(date.timestamp())


class FileService(Handler):
	"""Serves files and directory listings from a root directory of the
	local filesystem, read-only."""

	def __init__(self, root: str | Path | None = None, name: str | None = None):
		super().__init__(name)
		self.root: Path = (
			root if isinstance(root, Path) else Path(root or ".")
		).absolute()

	def process(self, request: HTTPRequest) -> HTTPResponse:
		if request.method not in METHODS:
			return request.notAllowed(METHODS)
		res = self.read(request)
		return res.strip() if request.method == "HEAD" else res

	def read(self, request: HTTPRequest) -> HTTPResponse:
		if not request.path.startswith("/"):
			return request.error(400, f"Unsupported request target: {request.path}")
		path: str = unquote(request.path)
		if "\x00" in path:
			return request.forbidden(f"Not authorized to access path: {path!r}")
		cleaned: str | None = cleanPath(path)
		if cleaned is None:
			# Climbs above the root
			return request.notFound()
		elif cleaned != path:
			# The redirects below are relative to a clean request path
			return self.redirect(request, quote(cleaned))
		elif path.endswith(f"/{INDEX_PAGE}"):
			return self.redirect(request, "./")
		local_path = self.resolvePath(path)
		if local_path is None:
			return request.forbidden(f"Not authorized to access path: {path}")
		try:
			if not local_path.exists():
				return request.notFound()
			elif local_path.is_dir():
				if not path.endswith("/"):
					return self.redirect(request, f"{quote(local_path.name)}/")
				index_path = local_path / INDEX_PAGE
				if index_path.is_file():
					return self.renderFile(request, index_path)
				else:
					return self.renderDir(request, path, local_path)
			elif path.endswith("/"):
				return self.redirect(request, f"../{quote(local_path.name)}")
			elif not local_path.is_file():
				return request.forbidden(f"Not a regular file: {path}")
			else:
				return self.renderFile(request, local_path)
		except PermissionError:
			return request.forbidden(f"Not authorized to access path: {path}")
		except (FileNotFoundError, NotADirectoryError):
			return request.notFound()

	def resolvePath(self, path: str) -> Path | None:
		"""Maps the decoded request path to a path within the root, returning
		`None` when it can't be mapped. The path is anchored at `/` before
		being normalized, so `..` segments can't climb above the root."""
		if "\x00" in path:
			return None
		normalized: str = posixpath.normpath(f"/{path}").lstrip("/")
		local_path = self.root.joinpath(normalized).absolute()
		if not local_path.parts[: len(parts := self.root.parts)] == parts:
			return None
		return local_path

	def redirect(self, request: HTTPRequest, location: str) -> HTTPResponse:
		if request.rawQuery:
			location = f"{location}?{request.rawQuery}"
		return request.redirect(location, permanent=True)

	def guessContentType(self, path: Path) -> str:
		if path.name == "importmap.json":
			return "application/importmap+json"
		else:
			return getContentType(path)

	# =========================================================================
	# FILES
	# =========================================================================

	def renderFile(self, request: HTTPRequest, localPath: Path) -> HTTPResponse:
		stat = localPath.stat()
		size: int = stat.st_size
		# HTTP dates have a precision of one second
		modified: int = int(stat.st_mtime)
		headers: dict[str, str] = {
			"Last-Modified": formatdate(modified, usegmt=True),
			"Accept-Ranges": "bytes",
		}
		unmodified_since = parseDate(request.header("If-Unmodified-Since"))
		if unmodified_since is not None and modified > unmodified_since:
			return request.respondEmpty(412)
		modified_since = parseDate(request.header("If-Modified-Since"))
		if modified_since is not None and modified <= modified_since:
			return request.respondEmpty(304, headers)
		content_type: str = self.guessContentType(localPath)
		ranges: list[ByteRange] | None = None
		range_header: str | None = request.header("Range")
		if range_header is not None and self.matchesIfRange(request, modified):
			try:
				ranges = parseRange(range_header, size)
			except RangeNotSatisfiable as e:
				return request.error(
					416, str(e), headers={"Content-Range": e.contentRange}
				)
			if ranges and rangesLength(ranges) > size:
				# Overlapping ranges asking for more than the file are
				# answered with the whole file.
				ranges = None
		if logged(debug):
			debug("Serving file", Path=str(localPath), Size=size, Ranges=len(ranges or ()))
		if not ranges:
			return request.respondFile(
				localPath, headers=headers, contentType=content_type
			)
		elif len(ranges) == 1:
			r = ranges[0]
			return request.respond(
				HTTPBodyFile(localPath, r.start, r.length),
				contentType=content_type,
				status=206,
				headers=headers | {"Content-Range": r.contentRange(size)},
			)
		else:
			return self.renderRanges(
				request, localPath, ranges, size, content_type, headers
			)

	def renderRanges(
		self,
		request: HTTPRequest,
		localPath: Path,
		ranges: list[ByteRange],
		size: int,
		contentType: str,
		headers: dict[str, str],
	) -> HTTPResponse:
		"""Responds with a `multipart/byteranges` body, one part per range."""
		boundary: str = secrets.token_hex(15)
		parts: list[bytes | HTTPBodyFile] = []
		for i, r in enumerate(ranges):
			# Parts after the first are preceded by a line break
			sep: str = "\r\n" if i else ""
			parts.append(
				(
					f"{sep}--{boundary}\r\n"
					f"Content-Type: {contentType}\r\n"
					f"Content-Range: {r.contentRange(size)}\r\n"
					"\r\n"
				).encode("ascii")
			)
			parts.append(HTTPBodyFile(localPath, r.start, r.length))
		parts.append(f"\r\n--{boundary}--\r\n".encode("ascii"))
		length: int = sum(
			len(_) if isinstance(_, bytes) else _.length for _ in parts
		)
		return request.respond(
			HTTPBodyStream(iter(parts), length),
			contentType=f"multipart/byteranges; boundary={boundary}",
			status=206,
			headers=headers,
		)

	def matchesIfRange(self, request: HTTPRequest, modified: int) -> bool:
		"""Tells if the `Range` header applies given the `If-Range`
		validator, if any."""
		value: str | None = request.header("If-Range")
		if value is None:
			return True
		elif value.startswith('"') or value.startswith("W/"):
			# We don't emit entity tags, so none can match
			return False
		else:
			return parseDate(value) == modified

	# =========================================================================
	# DIRECTORIES
	# =========================================================================

	def renderDir(
		self, request: HTTPRequest, path: str, localPath: Path
	) -> HTTPResponse:
		files: list[Node] = []
		dirs: list[Node] = []
		for p in sorted(localPath.iterdir(), key=lambda _: _.name):
			if p.is_dir():
				dirs.append(H.li(H.a(f"{p.name}/", href=f"{quote(p.name)}/")))
			else:
				files.append(H.li(H.a(p.name, href=quote(p.name))))
		if path != "/":
			dirs.insert(0, H.li(H.a("../", href="../")))

		nodes: list[Node] = []
		if dirs:
			nodes.append(
				H.section(
					H.h2("Directories"),
					H.ul(*dirs, style='list-style-type: "\\1F4C1";'),
				)
			)
		if files:
			nodes.append(
				H.section(
					H.h2("Files"), H.ul(*files, style='list-style-type: "\\1F4C4";')
				)
			)
		return request.respondHTML(
			"".join(
				html(
					H.html(
						H.head(
							H.meta(charset="utf-8"),
							H.meta(
								name="viewport",
								content="width=device-width, initial-scale=1.0",
							),
							H.title(path),
							H.style(FILE_CSS),
						),
						H.body(H.h1("Listing for ", H.code(path)), *nodes),
					),
					doctype="html",
				)
			)
		)


# EOF
