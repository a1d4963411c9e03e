import pytest

from dirserve.http.ranges import ByteRange, RangeNotSatisfiable, parseRange

SIZE: int = 100


def test_no_header():
	assert parseRange(None, SIZE) is None


@pytest.mark.parametrize(
	"header,expected",
	[
		("bytes=0-9", [ByteRange(0, 10)]),
		("bytes=90-", [ByteRange(90, 10)]),
		("bytes=-5", [ByteRange(95, 5)]),
		("bytes=-500", [ByteRange(0, 100)]),
		("bytes=95-500", [ByteRange(95, 5)]),
		("bytes=0-0, -1", [ByteRange(0, 1), ByteRange(99, 1)]),
		("bytes= 10-19 ,, 30-39", [ByteRange(10, 10), ByteRange(30, 10)]),
		# Ranges past the end are dropped as long as one overlaps
		("bytes=200-300, 0-1", [ByteRange(0, 2)]),
	],
)
def test_satisfiable(header: str, expected: list[ByteRange]):
	assert parseRange(header, SIZE) == expected


@pytest.mark.parametrize(
	"header",
	[
		"bytes=100-",
		"bytes=200-300",
		"bytes=-0",
		"bytes=5-1",
		"bytes=a-b",
		"bytes=-",
		"bytes=1",
		"items=0-1",
		# Only ASCII digits are valid positions
		"bytes=²-",
		"bytes=0-²",
		"bytes=١-٢",
	],
)
def test_not_satisfiable(header: str):
	with pytest.raises(RangeNotSatisfiable) as e:
		parseRange(header, SIZE)
	assert e.value.contentRange == "bytes */100"


@pytest.mark.parametrize("header", ["bytes=", "bytes= , ,"])
def test_empty_range_list(header: str):
	assert parseRange(header, SIZE) is None


def test_content_range():
	r = ByteRange(10, 5)
	assert r.end == 14
	assert r.contentRange(SIZE) == "bytes 10-14/100"


# EOF
