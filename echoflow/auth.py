from typing import Optional, Tuple


BEARER_PREFIX = "Bearer "
PUBLIC_PATHS = frozenset({"/healthz", "/readyz", "/metrics"})


def extract_bearer_token(header: Optional[str]) -> Tuple[str, bool, bool]:
    """Parse an Authorization header value.

    Returns ``(token, has_header, ok)``. An absent or blank header is
    ``("", False, True)``; anything that is not ``Bearer <non-empty token>``
    is reported as present but not ok.
    """
    header = (header or "").strip()
    if not header:
        return "", False, True
    if not header.startswith(BEARER_PREFIX):
        return "", True, False
    token = header[len(BEARER_PREFIX):].strip()
    if not token:
        return "", True, False
    return token, True, True


def is_public_path(path: str) -> bool:
    return path in PUBLIC_PATHS
