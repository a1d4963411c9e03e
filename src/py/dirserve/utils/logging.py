import os
import sys
import time
from enum import Enum
from typing import Any, ClassVar, NamedTuple, TextIO, TypeAlias
from contextvars import ContextVar

TValue: TypeAlias = bool | int | float | str | bytes | None

LogOrigin: ContextVar[str] = ContextVar("LogOrigin", default="dirserve")


class LogType(Enum):
	Message = 0  # A general information message
	Event = 20  # An event


class LogLevel(Enum):
	Debug = 0
	Info = 10
	Warning = 30  # A Warning
	Error = 40  # A managed error
	Exception = 50  # An un-managed error


LOG_LEVEL_COLOR = {
	LogLevel.Debug: 31,
	LogLevel.Info: 75,
	LogLevel.Warning: 202,
	LogLevel.Error: 160,
	LogLevel.Exception: 124,
}

# -----------------------------------------------------------------------------
#
# TERMINAL
#
# -----------------------------------------------------------------------------

# SEE: https://no-color.org/
NO_COLOR: bool = "NO_COLOR" in os.environ
FORCE_COLOR: bool = "FORCE_COLOR" in os.environ


class Term:
	BOLD: ClassVar[str] = "\033[1m"
	RESET: ClassVar[str] = "\033[0m"

	@staticmethod
	def HasColor(stream: TextIO) -> bool:
		if FORCE_COLOR:
			return True
		elif NO_COLOR:
			return False
		else:
			isatty = getattr(stream, "isatty", None)
			return bool(isatty and isatty())

	@staticmethod
	def Color(color: int) -> str:
		return f"\033[0;38;5;{color}m"


# -----------------------------------------------------------------------------
#
# ENTRIES
#
# -----------------------------------------------------------------------------


class LogEntry(NamedTuple):
	origin: str
	time: float
	type: LogType = LogType.Message
	level: LogLevel = LogLevel.Info
	message: str | None = None
	name: str | None = None
	value: Any = None
	context: dict[str, Any] | None = None


class LogConfig:
	level: LogLevel = LogLevel.Info


def setLevel(level: LogLevel) -> LogLevel:
	"""Sets the minimum level of the entries that get written, returning
	the previous one."""
	previous = LogConfig.level
	LogConfig.level = level
	return previous


def formatData(value: Any) -> str:
	if isinstance(value, dict):
		return " ".join(f"{k}={formatData(v)}" for k, v in value.items())
	elif isinstance(value, list) or isinstance(value, tuple):
		return ",".join(formatData(v) for v in value)
	elif isinstance(value, str):
		return repr(value) if " " in value else value
	elif isinstance(value, bool):
		return "✓" if value else "✗"
	elif isinstance(value, float):
		return f"{value:0.2f}"
	elif value is None:
		return "◌"
	else:
		return str(value)


def send(entry: LogEntry) -> LogEntry:
	if entry.level.value < LogConfig.level.value:
		return entry
	# NOTE: The stream is resolved on each write so that redirections of
	# `sys.stderr` (ie. test captures) are honoured.
	stream: TextIO = sys.stderr
	color: bool = Term.HasColor(stream)
	clr: str = Term.Color(LOG_LEVEL_COLOR[entry.level]) if color else ""
	bold: str = Term.BOLD if color else ""
	reset: str = Term.RESET if color else ""
	context: str = f" {formatData(entry.context)}" if entry.context else ""
	if entry.type == LogType.Event:
		value: str = "" if entry.value is None else f" {formatData(entry.value)}"
		stream.write(
			f"{clr}{bold}[{entry.origin}] {entry.name}{reset}{value}{context}\n"
		)
	else:
		code: str = "" if entry.value is None else f" [{entry.value}]"
		stream.write(
			f"{clr}{bold}[{entry.origin}]{reset}{code} {entry.message}{context}\n"
		)
	stream.flush()
	return entry


def entry(
	*,
	type: LogType = LogType.Message,
	level: LogLevel = LogLevel.Info,
	message: str | None = None,
	name: str | None = None,
	value: Any = None,
	context: dict[str, Any],
	origin: str | None = None,
) -> LogEntry:
	return LogEntry(
		origin=origin or LogOrigin.get(),
		time=time.time(),
		type=type,
		level=level,
		message=message,
		name=name,
		value=value,
		context=context,
	)


def debug(message: str, *, origin: str | None = None, **context: Any) -> LogEntry:
	return send(
		entry(message=message, level=LogLevel.Debug, origin=origin, context=context)
	)


def info(message: str, *, origin: str | None = None, **context: Any) -> LogEntry:
	return send(entry(message=message, origin=origin, context=context))


def warning(message: str, *, origin: str | None = None, **context: Any) -> LogEntry:
	return send(
		entry(message=message, level=LogLevel.Warning, origin=origin, context=context)
	)


def error(
	message: str,
	code: int | str | None,
	*,
	origin: str | None = None,
	**context: Any,
) -> LogEntry:
	return send(
		entry(
			message=message,
			value=code,
			level=LogLevel.Error,
			origin=origin,
			context=context,
		)
	)


def event(
	event: str,
	value: Any = None,
	*,
	origin: str | None = None,
	**context: Any,
) -> LogEntry:
	return send(
		entry(
			name=event,
			value=value,
			type=LogType.Event,
			origin=origin,
			context=context,
		)
	)


def exception(
	exception: BaseException,
	message: str | None = None,
) -> BaseException:
	try:
		stream = sys.stderr
		stream.write(
			f"!!! EXCP {f'{message}: ' if message else ''}[{exception.__class__.__name__}] {exception}\n"
		)
		tb = exception.__traceback__
		while tb:
			code = tb.tb_frame.f_code
			stream.write(
				f"... in {code.co_name:15s} at {tb.tb_lineno:4d} in {code.co_filename}\n",
			)
			tb = tb.tb_next
		stream.flush()
	except Exception:  # nosec: B110
		# Swallow all exceptions so that this function can be called from an exception
		# handler safely.
		pass
	# Return the exception so that this function can be called like:
	#   raise exception(e)
	return exception


def logged(item: Any) -> bool:
	"""Takes one of the logging function, and tells if it is currently
	enabled. This is used to guard against building entries (and their
	context) when they would be dropped."""
	if item is debug:
		return LogConfig.level.value <= LogLevel.Debug.value
	elif item is warning:
		return LogConfig.level.value <= LogLevel.Warning.value
	elif item is error:
		return LogConfig.level.value <= LogLevel.Error.value
	else:
		return LogConfig.level.value <= LogLevel.Info.value


# EOF
