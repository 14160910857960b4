from django.core.exceptions import ValidationError
from django.db import models

# -----------------------------------------
# Enforce tenant scoping across all models
# that belong to a company
# -----------------------------------------
# Define subclass of Django’s QuerySet
class TenantQuerySet(models.QuerySet):
    def for_company(self, company):         # Add queryset helper
        # accept a Company instance or its primary key
        company_id = getattr(company, "pk", company)
        return self.filter(company_id=company_id) # Apply filter

    def active(self, company):
        return self.for_company(company).filter(
                            is_active=True   # only fetch active records
                        )
    # Enables query:
    # Account.objects.active(company_id)


# Attach TenantQuerySet to .objects
class TenantManager(models.Manager.from_queryset(TenantQuerySet)):
    pass


# -----------------------------------------
# Ledger tables are insert-only
# -----------------------------------------
class AppendOnlyQuerySet(TenantQuerySet):
    # Bulk update/delete would bypass model-level immutability,
    # so they are refused at the queryset level too
    def update(self, **kwargs):
        raise ValidationError(
            f"{self.model.__name__} rows are immutable; post a reversing entry instead."
        )

    def delete(self):
        raise ValidationError(
            f"{self.model.__name__} rows cannot be deleted; post a reversing entry instead."
        )

    update.queryset_only = True
    delete.queryset_only = True


class AppendOnlyManager(models.Manager.from_queryset(AppendOnlyQuerySet)):
    pass
