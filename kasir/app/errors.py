class KasirError(Exception):
    """Base for errors that are converted to a user-facing message at the operation boundary."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(KasirError):
    status_code = 400


class AuthError(KasirError):
    status_code = 401


class NotAuthenticatedError(KasirError):
    # Raised for cart mutations without an active user; the cart swallows it.
    status_code = 401


class FetchError(KasirError):
    status_code = 502


class BackendError(Exception):
    """Failure reported by the backend query layer (connection, SQL, pool timeout)."""
