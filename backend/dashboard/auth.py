import hmac

LOCAL_HOSTS = ("localhost", "127.0.0.1")


def secrets_match(provided: str | None, expected: str) -> bool:
    """Constant-time comparison of a client-supplied secret."""
    if provided is None:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def is_local_host(host: str | None) -> bool:
    if not host:
        return False
    return any(local in host for local in LOCAL_HOSTS)
