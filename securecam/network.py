import socket

FALLBACK_IP = "127.0.0.1"


def _is_usable(address):
    return bool(address) and not address.startswith("127.") and address != "0.0.0.0"


def get_local_ip():
    """Best-effort LAN IPv4 address of this host."""
    try:
        lan_ip = socket.gethostbyname(socket.gethostname())
    except OSError:
        lan_ip = ""
    if _is_usable(lan_ip):
        return lan_ip

    # Hostname maps to loopback on many distros; ask the routing table instead.
    probe = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        probe.connect(("10.255.255.255", 1))
        lan_ip = probe.getsockname()[0]
    except OSError:
        lan_ip = ""
    finally:
        probe.close()
    return lan_ip if _is_usable(lan_ip) else FALLBACK_IP


def server_url(host, port):
    if host in ("", "0.0.0.0", "::"):
        host = get_local_ip()
    return f"http://{host}:{port}"
