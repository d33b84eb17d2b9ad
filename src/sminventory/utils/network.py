import socket


def check_internet(host: str = "8.8.8.8", port: int = 53, timeout: float = 3.0) -> bool:
    """
    Check connectivity by opening a TCP connection to a highly available host.

    Used before remote catalog lookups so an offline machine fails fast
    instead of waiting out an HTTP timeout per model.

    Args:
        host: Address to connect to (default: Google DNS 8.8.8.8)
        port: Port to connect to (default: 53/TCP)
        timeout: Connection timeout in seconds

    Returns:
        True if the connection succeeds, False otherwise
    """
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False
