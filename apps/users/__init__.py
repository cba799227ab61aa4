"""Users app package.

Defines the custom user model with roles and the authorization rule chain
used by the booking services and API permissions. Use
``apps.users.models.CustomUser`` as the AUTH_USER_MODEL throughout the
project.
"""
