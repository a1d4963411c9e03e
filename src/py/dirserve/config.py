# NOTE: There is no configuration surface, the server always listens on
# every interface, on the same port.
HOST: str = "0.0.0.0"  # nosec: B104
PORT: int = 8080

# The host name used when announcing the address being served
ANNOUNCE_HOST: str = "localhost"

LOG_REQUESTS: bool = False

# Maximum size of the request line and headers of a request, past which
# the request is answered with 431 and the connection closed.
MAX_HEADER_BYTES: int = 1 << 20

# EOF
