import secrets


def is_authorized(header_value: str | None, auth_key: str) -> bool:
    """Check an ``Authorization`` header against the shared upload secret.

    The header is compared verbatim: no scheme prefix is stripped.
    """
    if header_value is None or not auth_key:
        return False
    return secrets.compare_digest(header_value.encode("utf-8"), auth_key.encode("utf-8"))
