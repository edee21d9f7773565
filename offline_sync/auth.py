from typing import Optional


class AuthState:
    """Current signed-in user as reported by the host app."""

    def __init__(self, user_id: Optional[str] = None, access_token: Optional[str] = None):
        self._user_id = user_id or None
        self._access_token = access_token or None

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def access_token(self) -> Optional[str]:
        return self._access_token

    @property
    def is_authenticated(self) -> bool:
        return bool(self._user_id)

    def sign_in(self, user_id: str, access_token: Optional[str] = None) -> None:
        if not user_id:
            raise ValueError("user_id is required")
        self._user_id = user_id
        self._access_token = access_token or None

    def sign_out(self) -> None:
        self._user_id = None
        self._access_token = None
