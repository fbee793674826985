from django.db import models
from django.contrib.auth.models import AbstractUser, UserManager as DjangoUserManager


class UserManager(DjangoUserManager):
    def create_superuser(self, username, email=None, password=None, **extra_fields):
        extra_fields.setdefault("role", "admin")
        return super().create_superuser(username, email, password, **extra_fields)


class User(AbstractUser):
    """
    Storefront account. Customers own orders and returns; ``support`` and
    ``admin`` roles (or ``is_staff``) operate the returns back office.
    """

    ROLE_CHOICES = [
        ('customer', 'Customer'),
        ('support', 'Support'),
        ('admin', 'Administrator'),
    ]

    id = models.BigAutoField(primary_key=True)
    phone = models.CharField(max_length=20, blank=True, default='', verbose_name='Phone')
    role = models.CharField(
        max_length=20,
        choices=ROLE_CHOICES,
        default='customer',
        verbose_name='Role'
    )

    objects = UserManager()

    class Meta:
        verbose_name = 'User'
        verbose_name_plural = 'Users'

    def __str__(self):
        return self.username
