from abc import ABC, abstractmethod
from typing import Any, Awaitable

from .http.model import HTTPRequest, HTTPResponse

# -----------------------------------------------------------------------------
#
# HANDLER
#
# -----------------------------------------------------------------------------


class Handler(ABC):
	"""Anything that can respond to an HTTP request. The server holds
	exactly one handler and gives it every request it parses."""

	def __init__(self, name: str | None = None) -> None:
		self.name: str = name or self.__class__.__name__

	async def start(self) -> None:
		"""Can be overridden to do asynchronous pre-start work"""
		pass

	async def stop(self) -> None:
		"""Can be overridden to do asynchronous post-stop work"""
		pass

	@abstractmethod
	def process(
		self, request: HTTPRequest
	) -> HTTPResponse | Awaitable[HTTPResponse]: ...

	def __repr__(self) -> str:
		return f"(Handler {self.name})"


def ensureHandler(value: Any) -> Handler:
	"""Makes sure the given value is a handler instance, instantiating
	handler classes."""
	if isinstance(value, Handler):
		return value
	elif isinstance(value, type) and issubclass(value, Handler):
		return value()
	else:
		raise RuntimeError(f"Unsupported handler type {type(value)}: {value}")


# EOF
