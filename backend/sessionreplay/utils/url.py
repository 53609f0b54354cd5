"""URL utility functions."""
import urllib.parse


def decode_session_id(session_id: str) -> str:
    """
    Decode a URL-encoded session ID.

    Args:
        session_id: Potentially URL-encoded session ID

    Returns:
        Decoded session ID
    """
    return urllib.parse.unquote(session_id)


def public_url(base_path: str, *segments: str) -> str:
    """
    Build an externally servable path for an artifact.

    Args:
        base_path: Optional prefix (e.g. ``https://cdn.example.com``)
        segments: Path segments, each percent-encoded

    Returns:
        URL string such as ``/videos/abc.mp4``
    """
    encoded = "/".join(urllib.parse.quote(segment, safe="") for segment in segments)
    return f"{base_path.rstrip('/')}/{encoded}"
