"""Users app package.

Defines the custom user model referenced by bookings and notifications.
Use ``apps.users.models.CustomUser`` as the AUTH_USER_MODEL throughout
the project.
"""
