"""
Custom authentication backend for the hospital RBAC service.

Provides email-based authentication compatible with Django admin.
"""
from django.contrib.auth.backends import BaseBackend
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError


class EmailAuthBackend(BaseBackend):
    """
    Authenticate using email address instead of username.

    This backend is compatible with Django admin and session authentication.
    """

    def authenticate(self, request, username=None, password=None, **kwargs):
        """
        Authenticate user by email and password.

        Django admin passes the email as 'username'.
        """
        User = get_user_model()
        email = username or kwargs.get('email')

        if not email or not password:
            return None

        user = User.objects.filter(email__iexact=email).first()
        if user is None:
            # Run the default password hasher once to reduce timing
            # difference between existing and non-existing users
            User().set_password(password)
            return None

        if user.check_password(password) and user.is_active:
            return user

        return None

    def get_user(self, user_id):
        User = get_user_model()
        try:
            return User.objects.get(pk=user_id)
        except (User.DoesNotExist, ValueError, ValidationError):
            return None
