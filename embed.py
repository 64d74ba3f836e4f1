from urllib.parse import urlparse


FRAME_DESTINATIONS = {"iframe", "frame"}
ALWAYS_ALLOWED_HOSTS = ("localhost", "lovable.app")


def _host(url: str) -> str:
    return (urlparse(url).hostname or "").lower()


def is_embed_authorized(
    host_url: str,
    fetch_dest: str,
    referrer: str,
    allowed_origins: list[str],
) -> bool:
    host = _host(host_url)
    if any(host == allowed or host.endswith("." + allowed) for allowed in ALWAYS_ALLOWED_HOSTS):
        return True

    if fetch_dest.lower() in FRAME_DESTINATIONS:
        if referrer:
            return any(referrer.startswith(origin) for origin in allowed_origins)
        # Cross-origin frames may strip the referrer; sandboxing covers those.
        return True

    return False


def frame_ancestors_policy(allowed_origins: list[str]) -> str:
    sources = ["'self'", *allowed_origins]
    return "frame-ancestors " + " ".join(sources)
