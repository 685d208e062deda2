import datetime

from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("desk_core", "0001_initial"),
    ]

    operations = [
        migrations.AlterUniqueTogether(
            name="ticketworkflowtransition",
            unique_together=set(),
        ),
        migrations.AddConstraint(
            model_name="ticketworkflowtransition",
            constraint=models.UniqueConstraint(
                deferrable=models.Deferrable["DEFERRED"],
                fields=("workflow", "from_state", "to_state"),
                name="workflow_transition_pair_unique",
            ),
        ),
        migrations.RemoveConstraint(
            model_name="businesshourswindow",
            name="business_hours_end_after_start",
        ),
        migrations.AddConstraint(
            model_name="businesshourswindow",
            constraint=models.CheckConstraint(
                condition=models.Q(
                    ("end_time__gt", models.F("start_time")),
                    ("end_time", datetime.time(0, 0)),
                    _connector="OR",
                ),
                name="business_hours_end_after_start",
            ),
        ),
    ]
