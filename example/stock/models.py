from django.db import models


class InventoryRecord(models.Model):
    """
    The contended inventory row, laid out the way PostgresRowLockBackend reads it.

    ``quantity`` is only ever changed through LockedMutator.
    """

    label = models.CharField(max_length=128)
    quantity = models.IntegerField(default=0)

    class Meta:
        db_table = "inventory_record"

    def __str__(self) -> str:
        return f"{self.label} ({self.quantity})"
