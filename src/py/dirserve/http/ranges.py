from typing import NamedTuple

# SEE: https://httpwg.org/specs/rfc9110.html#field.range

RANGE_UNIT: str = "bytes"


class RangeNotSatisfiable(ValueError):
	"""Raised when a `Range` header is malformed or when none of its ranges
	overlap the resource."""

	def __init__(self, message: str, size: int):
		super().__init__(message)
		self.size: int = size

	@property
	def contentRange(self) -> str:
		return f"{RANGE_UNIT} */{self.size}"


class ByteRange(NamedTuple):
	"""A resolved, inclusive byte range within a resource of known size."""

	start: int
	length: int

	@property
	def end(self) -> int:
		return self.start + self.length - 1

	def contentRange(self, size: int) -> str:
		return f"{RANGE_UNIT} {self.start}-{self.end}/{size}"


def isDigits(text: str) -> bool:
	"""Tells if the text is made of ASCII digits only, as `str.isdigit`
	also accepts other scripts and superscripts."""
	return text.isascii() and text.isdigit()


def parseRange(header: str | None, size: int) -> list[ByteRange] | None:
	"""Parses the `Range` header against a resource of the given `size`,
	returning `None` when there is no header or no range in it, or the list
	of satisfiable ranges in the order they were requested. Ranges that
	start past the end of the resource are dropped, and if none remain
	`RangeNotSatisfiable` is raised, as it is for any syntax error."""
	if header is None:
		return None
	value: str = header.strip()
	prefix: str = f"{RANGE_UNIT}="
	if not value.startswith(prefix):
		raise RangeNotSatisfiable(f"Unsupported range unit: {header}", size)
	ranges: list[ByteRange] = []
	count: int = 0
	for item in value[len(prefix) :].split(","):
		item = item.strip()
		if not item:
			continue
		count += 1
		first, sep, last = item.partition("-")
		first, last = first.strip(), last.strip()
		if not sep or not (isDigits(first) or isDigits(last)):
			raise RangeNotSatisfiable(f"Invalid range: {item}", size)
		elif (first and not isDigits(first)) or (last and not isDigits(last)):
			raise RangeNotSatisfiable(f"Invalid range: {item}", size)
		elif not first:
			# A suffix range, ie. the last N bytes
			suffix: int = min(int(last), size)
			if suffix == 0:
				continue
			ranges.append(ByteRange(size - suffix, suffix))
		else:
			start: int = int(first)
			end: int = int(last) if last else size - 1
			if last and start > end:
				raise RangeNotSatisfiable(f"Invalid range: {item}", size)
			elif start >= size:
				continue
			end = min(end, size - 1)
			ranges.append(ByteRange(start, end - start + 1))
	if not count:
		return None
	elif not ranges:
		raise RangeNotSatisfiable(f"Range does not overlap: {header}", size)
	return ranges


def rangesLength(ranges: list[ByteRange]) -> int:
	return sum(_.length for _ in ranges)


# EOF
