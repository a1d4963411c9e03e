from .http.model import (
	HTTPRequest,
	HTTPResponse,
)  # NOQA: F401
from .model import Handler  # NOQA: F401
from .server import ServerBindError, ServerOptions, ServerState, run  # NOQA: F401
from .services.files import FileService  # NOQA: F401

__version__ = "1.0.0"

# EOF
