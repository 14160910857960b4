from django.db import models


# ---------- Tenant / Company ----------
class Company(models.Model):

    """Tenant / Organization"""
    # Store company’s full display name
    name = models.CharField(max_length=200)

    slug = models.SlugField(  # A URL-friendly identifier
        max_length=80, unique=True  # no two companies can have the same slug
    )

    # One ledger currency per company (no conversion)
    currency_code = models.CharField(max_length=10, default="USD")

    # Payment reminder email settings
    # Falls back to settings.DEFAULT_FROM_EMAIL when blank
    reminder_from_email = models.EmailField(blank=True, default="")
    # Custom subject/body; placeholders like [CUSTOMER_NAME]
    # are substituted when the reminder is rendered
    reminder_subject = models.CharField(max_length=200, blank=True, default="")
    reminder_template = models.TextField(blank=True, default="")

    # Store timestamp when the record is first created
    created_at = models.DateTimeField(auto_now_add=True)

    # Meta options
    class Meta:
        verbose_name_plural = "companies"

    # String Representation
    def __str__(self):
        return self.name
