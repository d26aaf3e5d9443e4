"""Error kinds raised by the linking, session and dispatch services.

Each kind carries a stable ``code`` (used in JSON bodies and callback
redirects) and the HTTP status the app-level handler renders it with.
"""


class LinkError(Exception):
    code = "link_error"
    status_code = 400

    def __init__(self, message: str | None = None):
        self.message = message or self.code.replace("_", " ")
        super().__init__(self.message)


class InvalidInstance(LinkError):
    """User-supplied Misskey host is malformed or not a Misskey server."""

    code = "invalid_instance"
    status_code = 400


class StateMismatch(LinkError):
    """Callback does not belong to the attempt or session it claims."""

    code = "state_mismatch"
    status_code = 400


class HandshakeExpired(LinkError):
    """No live linking attempt for the callback's state."""

    code = "handshake_expired"
    status_code = 400


class ProviderRejected(LinkError):
    """Provider refused the exchange or returned something unusable."""

    code = "provider_rejected"
    status_code = 502


class ProviderUnauthorized(ProviderRejected):
    """Provider API answered 401 to an access token.

    Callers use the type to trigger a refresh; outside the process it is
    reported as ``provider_rejected``.
    """


class RefreshRevoked(LinkError):
    """Refresh credential is permanently invalid. Never leaves DispatchGate."""

    code = "refresh_revoked"
    status_code = 409


class NotConnected(LinkError):
    code = "not_connected"
    status_code = 409


class Unauthenticated(LinkError):
    code = "unauthenticated"
    status_code = 401


class AlreadyLinked(LinkError):
    code = "already_linked"
    status_code = 409


class NotAllowed(LinkError):
    """Action blocked by configuration or by the account model."""

    code = "not_allowed"
    status_code = 403

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)
