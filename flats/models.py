from django.core.validators import MinLengthValidator
from django.db import models


class Flat(models.Model):
    name = models.CharField(max_length=100)
    flat_username = models.CharField(
        max_length=50,
        unique=True,
        validators=[MinLengthValidator(3)],
    )
    min_approval_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=200,
        help_text="Entries above this amount need admin approval",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.name
