import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Branch",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("name", models.CharField(max_length=120, unique=True)),
                ("location", models.CharField(blank=True, max_length=200)),
            ],
            options={
                "ordering": ["name", "id"],
                "verbose_name_plural": "branches",
            },
        ),
        migrations.CreateModel(
            name="StockItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("product_id", models.CharField(max_length=120)),
                ("product_name", models.CharField(max_length=200)),
                ("quantity_available", models.IntegerField(default=0)),
                ("unit_price", models.DecimalField(decimal_places=2, max_digits=12)),
                ("reorder_level", models.IntegerField(default=0)),
                (
                    "branch",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="stock_items",
                        to="inventory.branch",
                    ),
                ),
            ],
            options={
                "ordering": ["branch_id", "product_name", "id"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("quantity_available__gte", 0)), name="stock_quantity_non_negative"
                    ),
                    models.CheckConstraint(condition=models.Q(("unit_price__gt", 0)), name="stock_unit_price_positive"),
                    models.CheckConstraint(
                        condition=models.Q(("reorder_level__gte", 0)), name="stock_reorder_level_non_negative"
                    ),
                    models.UniqueConstraint(fields=("branch", "product_id"), name="unique_stockitem_per_branch_product"),
                ],
            },
        ),
        migrations.CreateModel(
            name="StockMovement",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "movement_type",
                    models.CharField(
                        choices=[
                            ("transfer", "Transfer"),
                            ("purchase", "Purchase"),
                            ("receipt", "Receipt"),
                            ("adjustment", "Adjustment"),
                        ],
                        max_length=16,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("pending", "Pending"), ("approved", "Approved"), ("rejected", "Rejected")],
                        db_index=True,
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("product_id", models.CharField(max_length=120)),
                ("product_name", models.CharField(blank=True, max_length=200)),
                ("quantity", models.PositiveIntegerField()),
                ("unit_cost", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("reason", models.CharField(blank=True, max_length=200)),
                ("reference", models.CharField(blank=True, max_length=120)),
                ("requested_by", models.CharField(blank=True, max_length=120)),
                ("decided_by", models.CharField(blank=True, max_length=120)),
                ("decided_at", models.DateTimeField(blank=True, null=True)),
                (
                    "from_branch",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="outgoing_movements",
                        to="inventory.branch",
                    ),
                ),
                (
                    "to_branch",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="incoming_movements",
                        to="inventory.branch",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at", "-id"],
                "indexes": [
                    models.Index(fields=["to_branch", "status"], name="movement_to_branch_status_idx"),
                    models.Index(fields=["from_branch", "status"], name="movement_from_branch_status_idx"),
                    models.Index(fields=["reference"], name="movement_reference_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("quantity__gt", 0)), name="movement_quantity_positive"),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("from_branch", models.F("to_branch")), ("movement_type", "transfer"), _negated=True
                        ),
                        name="transfer_distinct_branches",
                    ),
                ],
            },
        ),
    ]
