"""
Custom DRF authentication classes.
"""
from rest_framework.authentication import BaseAuthentication, get_authorization_header
from rest_framework import exceptions


class JWTAuthentication(BaseAuthentication):
    """
    Authenticate `Authorization: Bearer <token>` headers issued by
    AuthService.generate_jwt.

    Requests without a bearer header are left anonymous so public endpoints
    keep working; a present but invalid token is rejected with 401.
    """

    keyword = 'Bearer'

    def authenticate(self, request):
        auth = get_authorization_header(request).split()

        if not auth or auth[0].lower() != self.keyword.lower().encode():
            return None

        if len(auth) != 2:
            raise exceptions.AuthenticationFailed('Invalid token header.')

        try:
            token = auth[1].decode()
        except UnicodeError:
            raise exceptions.AuthenticationFailed('Invalid token header.')

        # Imported lazily: the services module pulls in models
        from apps.rbac.services import AuthService

        user = AuthService.get_user_from_jwt(token)
        if user is None:
            raise exceptions.AuthenticationFailed('Invalid or expired token.')

        return (user, token)

    def authenticate_header(self, request):
        return self.keyword
