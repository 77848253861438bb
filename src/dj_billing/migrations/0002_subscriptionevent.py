import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("dj_billing", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="SubscriptionEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "event_type",
                    models.CharField(
                        choices=[
                            ("AUTO_SWITCHED", "Auto-switched"),
                            ("SWITCHED", "Switched"),
                            ("SUSPENDED", "Suspended"),
                            ("REACTIVATED", "Reactivated"),
                            ("TRIAL_EXPIRED", "Trial expired"),
                            ("EXTENDED", "Extended"),
                            ("CANCELLED", "Cancelled"),
                            ("PAYMENT_RECEIVED", "Payment received"),
                            ("PAYMENT_REJECTED", "Payment rejected"),
                            ("ORDER_FEE_DEDUCTED", "Order fee deducted"),
                        ],
                        max_length=32,
                    ),
                ),
                ("previous_type", models.CharField(blank=True, default="", max_length=16)),
                ("previous_status", models.CharField(blank=True, default="", max_length=16)),
                ("new_type", models.CharField(blank=True, default="", max_length=16)),
                ("new_status", models.CharField(blank=True, default="", max_length=16)),
                ("reason", models.CharField(blank=True, default="", max_length=255)),
                ("balance_minor", models.BigIntegerField(blank=True, null=True)),
                ("currency", models.CharField(max_length=3)),
                ("current_period_end", models.DateTimeField(blank=True, null=True)),
                (
                    "triggered_by",
                    models.CharField(
                        choices=[("SYSTEM", "System"), ("ADMIN", "Admin"), ("MERCHANT", "Merchant")],
                        max_length=16,
                    ),
                ),
                ("actor_id", models.BigIntegerField(blank=True, null=True)),
                ("created_at", models.DateTimeField()),
                (
                    "merchant",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="subscription_events",
                        to="dj_billing.merchant",
                    ),
                ),
                (
                    "payment_request",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="events",
                        to="dj_billing.paymentrequest",
                    ),
                ),
            ],
            options={
                "verbose_name": "Subscription event",
                "verbose_name_plural": "Subscription events",
                "ordering": ("-created_at", "-id"),
                "indexes": [
                    models.Index(fields=["merchant", "created_at"], name="subevent_merchant_created_idx"),
                    models.Index(fields=["event_type"], name="subevent_type_idx"),
                ],
            },
        ),
    ]
