from pathlib import Path

from .server import run
from .services.files import FileService


def main() -> None:
	"""Serves the current working directory on port 8080, until the process
	is terminated."""
	run(FileService(Path.cwd()))


if __name__ == "__main__":
	main()

# EOF
