import mimetypes
from pathlib import Path

mimetypes.init()

# Overrides for extensions that `mimetypes` reports as an encoding rather
# than a type.
MIME_TYPES: dict[str, str] = dict(
	bz2="application/x-bzip",
	gz="application/x-gzip",
)

# How many bytes are looked at when sniffing content
SNIFF_SIZE: int = 512

TEXT_TYPE: str = "text/plain; charset=utf-8"
BINARY_TYPE: str = "application/octet-stream"


def isText(path: Path | str, size: int = SNIFF_SIZE) -> bool:
	"""Check if a file is likely a text file by examining its content."""
	try:
		with open(path, "rb") as f:
			s = f.read(size)
	except OSError:
		return False
	if b"\x00" in s:
		return False
	try:
		s.decode("utf-8")
		return True
	except UnicodeDecodeError as e:
		# The sample may cut a multi-byte sequence in half
		return len(s) == size and e.start >= size - 3


def guessType(path: Path | str) -> str | None:
	"""Guesses the content type from the extension of the given path, returning
	`None` when the extension is unknown."""
	name = Path(path).name
	ext = name.rsplit(".", 1)[-1].lower() if "." in name else ""
	if ext in MIME_TYPES:
		return MIME_TYPES[ext]
	res = mimetypes.guess_type(name)[0]
	if res and res.startswith("text/") and "charset" not in res:
		return f"{res}; charset=utf-8"
	return res


def contentType(path: Path | str) -> str:
	"""Guesses the content type from the extension, falling back to sniffing
	the beginning of the file."""
	return guessType(path) or (TEXT_TYPE if isText(path) else BINARY_TYPE)


# EOF
