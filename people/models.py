from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    name = models.CharField(max_length=100, blank=True)
    bio = models.TextField(max_length=500, blank=True)

    @property
    def display_name(self):
        return self.name or self.username
