# users/models.py
from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    ROLE_PRODUCER = "producer"
    ROLE_WRITER = "writer"
    ROLE_ADMIN = "admin"

    ROLE_CHOICES = (
        (ROLE_PRODUCER, 'Producer'),
        (ROLE_WRITER, 'Writer'),
        (ROLE_ADMIN, 'Admin'),
    )

    role = models.CharField(
        max_length=30,
        choices=ROLE_CHOICES,
        default=ROLE_WRITER
    )

    # Receives minted submission tokens; producers may leave it blank
    wallet_address = models.CharField(max_length=64, blank=True, null=True)

    @property
    def is_producer(self) -> bool:
        return self.role == self.ROLE_PRODUCER

    @property
    def is_writer(self) -> bool:
        return self.role == self.ROLE_WRITER

    @property
    def is_platform_admin(self) -> bool:
        return self.role == self.ROLE_ADMIN or self.is_staff or self.is_superuser

    def __str__(self):
        return self.username
