import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Chat",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("chat_type", models.CharField(choices=[("direct", "Direct Message"), ("group", "Group")], db_index=True, default="group", help_text="Type of chat (direct or group)", max_length=10)),
                ("name", models.CharField(blank=True, default="", help_text="Name for group chats (empty for direct)", max_length=100)),
                ("icon_url", models.URLField(blank=True, default="", help_text="Group icon URL", max_length=500)),
                ("description", models.TextField(blank=True, default="", help_text="Group description")),
                ("created_by", models.ForeignKey(blank=True, help_text="User who created this chat", null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="created_chats", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "db_table": "chat_chat",
                "ordering": ["-updated_at"],
            },
        ),
        migrations.CreateModel(
            name="Message",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("content", models.TextField(help_text="Message text, or media URL for stickers and GIFs")),
                ("content_type", models.CharField(choices=[("text", "Text"), ("sticker", "Sticker"), ("gif", "GIF")], default="text", help_text="Kind of message body", max_length=10)),
                ("is_read", models.BooleanField(default=False, help_text="Derived read flag, recomputed from receipts")),
                ("chat", models.ForeignKey(help_text="Chat this message belongs to", on_delete=django.db.models.deletion.CASCADE, related_name="messages", to="chat.chat")),
                ("mentions", models.ManyToManyField(blank=True, help_text="Participants mentioned in this message", related_name="mentioned_in_messages", to=settings.AUTH_USER_MODEL)),
                ("reply_to", models.ForeignKey(blank=True, help_text="Message this one replies to (same chat)", null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="replies", to="chat.message")),
                ("sender", models.ForeignKey(blank=True, help_text="User who sent this message", null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="sent_messages", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "db_table": "chat_message",
                "ordering": ["created_at", "id"],
            },
        ),
        migrations.AddField(
            model_name="chat",
            name="latest_message",
            field=models.ForeignKey(blank=True, help_text="Most recent message (for sorting chat lists)", null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="+", to="chat.message"),
        ),
        migrations.AddField(
            model_name="chat",
            name="pinned_messages",
            field=models.ManyToManyField(blank=True, help_text="Messages pinned in this chat", related_name="pinned_in", to="chat.message"),
        ),
        migrations.CreateModel(
            name="DirectChatPair",
            fields=[
                ("chat", models.OneToOneField(help_text="The direct chat this pair represents", on_delete=django.db.models.deletion.CASCADE, primary_key=True, related_name="direct_pair", serialize=False, to="chat.chat")),
                ("user_lower", models.ForeignKey(help_text="User with lower ID in this pair", on_delete=django.db.models.deletion.CASCADE, related_name="+", to=settings.AUTH_USER_MODEL)),
                ("user_higher", models.ForeignKey(help_text="User with higher ID in this pair", on_delete=django.db.models.deletion.CASCADE, related_name="+", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "db_table": "chat_direct_pair",
                "constraints": [
                    models.UniqueConstraint(fields=("user_lower", "user_higher"), name="unique_direct_chat_pair"),
                    models.CheckConstraint(condition=models.Q(("user_lower_id__lt", models.F("user_higher_id"))), name="direct_pair_lower_less_than_higher"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Participant",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("role", models.CharField(blank=True, choices=[("owner", "Owner"), ("admin", "Admin"), ("member", "Member")], db_index=True, help_text="Role in group chat (null for direct chats)", max_length=10, null=True)),
                ("is_muted", models.BooleanField(default=False, help_text="Muted members cannot send messages to the group")),
                ("admin_position", models.IntegerField(blank=True, help_text="Position in the admin list, lower first (owner always leads)", null=True)),
                ("joined_at", models.DateTimeField(auto_now_add=True, help_text="When the user joined this chat")),
                ("left_at", models.DateTimeField(blank=True, db_index=True, help_text="When the user left (null if still active)", null=True)),
                ("left_voluntarily", models.BooleanField(blank=True, help_text="True if user left voluntarily, False if removed by someone", null=True)),
                ("chat", models.ForeignKey(help_text="Chat this membership belongs to", on_delete=django.db.models.deletion.CASCADE, related_name="participants", to="chat.chat")),
                ("removed_by", models.ForeignKey(blank=True, help_text="User who removed this participant", null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="removed_chat_participants", to=settings.AUTH_USER_MODEL)),
                ("user", models.ForeignKey(help_text="Member user", on_delete=django.db.models.deletion.CASCADE, related_name="chat_participations", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "db_table": "chat_participant",
                "ordering": ["joined_at", "id"],
                "indexes": [
                    models.Index(fields=["chat", "left_at"], name="chat_part_chat_active_idx"),
                    models.Index(fields=["user", "left_at"], name="chat_part_user_active_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(condition=models.Q(("left_at__isnull", True)), fields=("chat", "user"), name="unique_active_chat_participation"),
                    models.UniqueConstraint(condition=models.Q(("left_at__isnull", True), ("role", "owner")), fields=("chat",), name="unique_active_chat_owner"),
                    models.CheckConstraint(condition=models.Q(("is_muted", True), ("role__in", ("owner", "admin")), _negated=True), name="participant_admin_not_muted"),
                ],
            },
        ),
        migrations.CreateModel(
            name="MessageReceipt",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("delivered_at", models.DateTimeField(blank=True, null=True)),
                ("read_at", models.DateTimeField(blank=True, null=True)),
                ("message", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="receipts", to="chat.message")),
                ("user", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="message_receipts", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "db_table": "chat_message_receipt",
                "ordering": ["id"],
                "indexes": [
                    models.Index(fields=["user", "delivered_at"], name="chat_receipt_user_deliv_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("message", "user"), name="unique_message_receipt"),
                    models.CheckConstraint(condition=models.Q(("read_at__isnull", True), ("delivered_at__isnull", False), _connector="OR"), name="receipt_read_implies_delivered"),
                ],
            },
        ),
        migrations.CreateModel(
            name="MessageReaction",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("emoji", models.CharField(max_length=32)),
                ("message", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="reactions", to="chat.message")),
                ("user", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="message_reactions", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "db_table": "chat_message_reaction",
                "ordering": ["created_at", "id"],
                "constraints": [
                    models.UniqueConstraint(fields=("message", "user"), name="unique_reaction_per_user"),
                ],
            },
        ),
        migrations.AddIndex(
            model_name="chat",
            index=models.Index(fields=["-updated_at"], name="chat_chat_updated_idx"),
        ),
        migrations.AddIndex(
            model_name="message",
            index=models.Index(fields=["chat", "created_at"], name="chat_msg_chat_created_idx"),
        ),
    ]
