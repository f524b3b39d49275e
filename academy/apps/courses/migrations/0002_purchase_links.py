import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("courses", "0001_initial"),
        ("payments", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.AddField(
            model_name="enrollment",
            name="purchase",
            field=models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="enrollment", to="payments.purchase"),
        ),
        migrations.CreateModel(
            name="InstructorEarning",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("amount", models.PositiveBigIntegerField(verbose_name="amount")),
                ("currency", models.CharField(max_length=3, verbose_name="currency")),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="created at")),
                ("instructor", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="earnings", to=settings.AUTH_USER_MODEL)),
                ("purchase", models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name="instructor_earning", to="payments.purchase")),
            ],
            options={
                "verbose_name": "instructor earning",
                "verbose_name_plural": "instructor earnings",
                "indexes": [models.Index(fields=["instructor", "-created_at"], name="earning_instructor_idx")],
            },
        ),
    ]
