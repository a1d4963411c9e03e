import resource
from typing import NamedTuple

# Minimum recommended for servers handling many connections, some platforms
# (Darwin) report hard limits that would overflow.
MAX_FILES: int = 10 * 10240


class Limit(NamedTuple):
	soft: int
	hard: int


def limit(scope: int = resource.RLIMIT_NOFILE) -> Limit:
	return Limit(*resource.getrlimit(scope))


def unlimit(
	scope: int = resource.RLIMIT_NOFILE,
	ratio: float = 1.0,
	*,
	maximum: int | None = MAX_FILES,
) -> int | bool:
	"""Raises the soft limit of the given resource towards its hard limit,
	returning the new soft limit or `False` if it could not be changed."""
	lm = limit(scope)
	hard = lm.hard
	if hard == resource.RLIM_INFINITY:
		hard = maximum or lm.soft
	target = int(lm.soft + ratio * (hard - lm.soft))
	if maximum:
		target = min(maximum, target)
	target = max(target, lm.soft) if lm.soft != resource.RLIM_INFINITY else lm.soft
	try:
		resource.setrlimit(scope, (target, lm.hard))
		return target
	except ValueError:
		return False
	except OSError:
		return False


# EOF
