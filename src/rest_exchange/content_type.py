"""
Content-Type header parsing for rest_exchange.
"""

from typing import Dict, Optional


def extract_media_type(content_type: Optional[str]) -> Optional[str]:
    """
    Extract the media type from a Content-Type header.

    Args:
        content_type: Header value, e.g. "text/html; charset=utf-8"

    Returns:
        The lower-cased media type ("text/html"), or None if empty
    """
    if not content_type or not content_type.strip():
        return None
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type or None


def extract_parameters(content_type: Optional[str]) -> Dict[str, str]:
    """
    Extract all parameters from a Content-Type header.

    Parameter names are lower-cased; quoted values are unquoted.
    Segments without ``=`` are skipped.
    """
    parameters: Dict[str, str] = {}
    if not content_type or not content_type.strip():
        return parameters

    for part in content_type.split(";")[1:]:
        part = part.strip()
        key, sep, value = part.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        value = value.strip()
        if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
            value = value[1:-1]
        parameters[key.lower()] = value

    return parameters


def extract_parameter(content_type: Optional[str], name: str) -> Optional[str]:
    return extract_parameters(content_type).get(name.lower())


def extract_charset(content_type: Optional[str]) -> Optional[str]:
    return extract_parameter(content_type, "charset")


def extract_boundary(content_type: Optional[str]) -> Optional[str]:
    return extract_parameter(content_type, "boundary")
