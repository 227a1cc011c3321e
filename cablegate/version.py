"""Program version information."""

_BASE_VERSION = "1.2.2"
_MODIFIER = ""
_SHA = ""


def _compose(base: str, modifier: str, sha: str) -> str:
    return "-".join(part for part in (base, modifier, sha) if part)


_VERSION = _compose(_BASE_VERSION, _MODIFIER, _SHA)


def version() -> str:
    """Return the current program version."""
    return _VERSION


def sha() -> str:
    """Return the build commit sha, empty when unknown."""
    return _SHA