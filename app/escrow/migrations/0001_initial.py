import uuid

import django.db.models.deletion
import django_fsm
from django.conf import settings
from django.db import migrations, models


def _timestamps():
    return [
        (
            "created_at",
            models.DateTimeField(
                auto_now_add=True,
                db_index=True,
                help_text="Timestamp when this record was created",
            ),
        ),
        (
            "updated_at",
            models.DateTimeField(
                auto_now=True,
                help_text="Timestamp when this record was last modified",
            ),
        ),
    ]


def _uuid_pk():
    return (
        "id",
        models.UUIDField(
            default=uuid.uuid4,
            editable=False,
            help_text="Unique identifier for this record",
            primary_key=True,
            serialize=False,
        ),
    )


CASE_STATUS_CHOICES = [
    ("draft", "Draft"),
    ("open", "Open"),
    ("assigned", "Assigned"),
    ("in_progress", "In Progress"),
    ("disputed", "Disputed"),
    ("completed", "Completed"),
    ("closed", "Closed"),
    ("cancelled", "Cancelled"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Case",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                ("title", models.CharField(help_text="Short case title", max_length=300)),
                ("description", models.TextField(blank=True, help_text="Scope of work")),
                (
                    "total_amount_cents",
                    models.PositiveBigIntegerField(
                        default=0,
                        help_text="Agreed case price in smallest currency unit",
                    ),
                ),
                (
                    "locked_total_amount_cents",
                    models.PositiveBigIntegerField(
                        blank=True,
                        null=True,
                        help_text="Price snapshot taken when escrow was created",
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="usd",
                        help_text="ISO 4217 currency code (lowercase)",
                        max_length=3,
                    ),
                ),
                (
                    "escrow_intent_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Stripe PaymentIntent ID holding the escrow (pi_xxx)",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "escrow_session_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe Checkout Session ID used to fund escrow (cs_xxx)",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "payment_intent_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Most recent PaymentIntent seen for this case",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "escrow_status",
                    models.CharField(
                        choices=[
                            ("awaiting_funding", "Awaiting Funding"),
                            ("funded", "Funded"),
                            ("released", "Released"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="awaiting_funding",
                        help_text="State of the held funds",
                        max_length=20,
                    ),
                ),
                (
                    "payment_status",
                    models.CharField(
                        blank=True,
                        help_text="Last PaymentIntent status reported by Stripe",
                        max_length=40,
                    ),
                ),
                (
                    "payment_released",
                    models.BooleanField(
                        default=False,
                        help_text="Whether funds were paid out to the paralegal",
                    ),
                ),
                (
                    "payout_transfer_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe Transfer ID of the paralegal payout (tr_xxx)",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "paid_out_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the payout transfer was created",
                        null=True,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=CASE_STATUS_CHOICES,
                        db_index=True,
                        default="open",
                        help_text="Lifecycle status (managed by CaseStateMachine)",
                        max_length=50,
                    ),
                ),
                (
                    "completed_at",
                    models.DateTimeField(
                        blank=True, help_text="When the case reached COMPLETED", null=True
                    ),
                ),
                (
                    "closed_at",
                    models.DateTimeField(
                        blank=True, help_text="When the case reached CLOSED", null=True
                    ),
                ),
                (
                    "archived",
                    models.BooleanField(
                        default=False,
                        help_text="Hidden from active lists (completed/closed cases only)",
                    ),
                ),
                (
                    "archive_zip_key",
                    models.CharField(
                        blank=True,
                        help_text="Object store key of the generated archive",
                        max_length=512,
                    ),
                ),
                (
                    "archive_ready_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the archive was last generated",
                        null=True,
                    ),
                ),
                (
                    "purge_scheduled_for",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="When stored artifacts become eligible for purge",
                        null=True,
                    ),
                ),
                (
                    "purged_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When stored artifacts were irreversibly deleted",
                        null=True,
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each write",
                    ),
                ),
                (
                    "attorney",
                    models.ForeignKey(
                        help_text="Attorney who posted and pays for the case",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="cases_as_attorney",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "paralegal",
                    models.ForeignKey(
                        blank=True,
                        help_text="Paralegal hired onto the case (null until assignment)",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="cases_as_paralegal",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Case",
                "verbose_name_plural": "Cases",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="escrow_case_status_5b1d0e_idx"),
                    models.Index(
                        fields=["purge_scheduled_for", "purged_at"],
                        name="escrow_case_purge_s_8c2f41_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Dispute",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                ("message", models.TextField(help_text="Description of the problem")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("open", "Open"),
                            ("resolved", "Resolved"),
                            ("rejected", "Rejected"),
                        ],
                        db_index=True,
                        default="open",
                        help_text="Dispute status",
                        max_length=20,
                    ),
                ),
                ("admin_notes", models.TextField(blank=True, help_text="Internal admin notes")),
                (
                    "resolved_at",
                    models.DateTimeField(
                        blank=True, help_text="When the dispute was resolved", null=True
                    ),
                ),
                (
                    "case",
                    models.ForeignKey(
                        help_text="Case under dispute",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="disputes",
                        to="escrow.case",
                    ),
                ),
                (
                    "raised_by",
                    models.ForeignKey(
                        help_text="Party who opened the dispute",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="disputes_raised",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Dispute",
                "verbose_name_plural": "Disputes",
                "ordering": ["created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="escrow_disp_status_3f9a27_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="DisputeSettlement",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "action",
                    models.CharField(
                        choices=[
                            ("refund", "Refund"),
                            ("release", "Release"),
                            ("release_partial", "Release Partial"),
                        ],
                        help_text="Settlement outcome",
                        max_length=20,
                    ),
                ),
                (
                    "gross_amount_cents",
                    models.PositiveBigIntegerField(
                        default=0,
                        help_text="Amount released to the paralegal before platform fee",
                    ),
                ),
                (
                    "refund_amount_cents",
                    models.PositiveBigIntegerField(
                        default=0, help_text="Amount refunded to the attorney"
                    ),
                ),
                (
                    "payout_amount_cents",
                    models.PositiveBigIntegerField(
                        default=0, help_text="Net amount transferred to the paralegal"
                    ),
                ),
                (
                    "fee_amount_cents",
                    models.PositiveBigIntegerField(
                        default=0, help_text="Platform fee retained from the gross amount"
                    ),
                ),
                (
                    "refund_id",
                    models.CharField(
                        blank=True, help_text="Stripe Refund ID (re_xxx)", max_length=255, null=True
                    ),
                ),
                (
                    "transfer_id",
                    models.CharField(
                        blank=True, help_text="Stripe Transfer ID (tr_xxx)", max_length=255, null=True
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("refund_done", "Refund Done"),
                            ("transfer_pending", "Transfer Pending"),
                            ("completed", "Completed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Settlement progress",
                        max_length=20,
                    ),
                ),
                (
                    "last_error",
                    models.TextField(
                        blank=True, help_text="Sanitized error from the last failed attempt"
                    ),
                ),
                (
                    "attempts",
                    models.PositiveSmallIntegerField(
                        default=0, help_text="Number of settlement attempts"
                    ),
                ),
                (
                    "settled_at",
                    models.DateTimeField(
                        blank=True, help_text="When the settlement completed", null=True
                    ),
                ),
                (
                    "case",
                    models.OneToOneField(
                        help_text="Settled case (at most one settlement per case)",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="settlement",
                        to="escrow.case",
                    ),
                ),
                (
                    "dispute",
                    models.OneToOneField(
                        help_text="Dispute resolved by this settlement",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="settlement",
                        to="escrow.dispute",
                    ),
                ),
                (
                    "settled_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="Admin who settled the dispute",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="settlements",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Dispute Settlement",
                "verbose_name_plural": "Dispute Settlements",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="Payout",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "amount_paid_cents",
                    models.PositiveBigIntegerField(
                        help_text="Net amount transferred, in smallest currency unit"
                    ),
                ),
                (
                    "gross_amount_cents",
                    models.PositiveBigIntegerField(
                        default=0, help_text="Released amount before platform fee"
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="usd", help_text="ISO 4217 currency code (lowercase)", max_length=3
                    ),
                ),
                (
                    "transfer_id",
                    models.CharField(
                        help_text="Stripe Transfer ID (tr_xxx)", max_length=255, unique=True
                    ),
                ),
                (
                    "case",
                    models.OneToOneField(
                        help_text="Case this payout settles (one payout per case)",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payout",
                        to="escrow.case",
                    ),
                ),
                (
                    "paralegal",
                    models.ForeignKey(
                        help_text="Paralegal receiving the payout",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payouts",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Payout",
                "verbose_name_plural": "Payouts",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="PlatformIncome",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "fee_amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Platform fee in smallest currency unit"
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="usd", help_text="ISO 4217 currency code (lowercase)", max_length=3
                    ),
                ),
                (
                    "case",
                    models.OneToOneField(
                        help_text="Case this fee was earned on (one row per case)",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="platform_income",
                        to="escrow.case",
                    ),
                ),
                (
                    "attorney",
                    models.ForeignKey(
                        help_text="Attorney who paid",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "paralegal",
                    models.ForeignKey(
                        help_text="Paralegal who was paid",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Platform Income",
                "verbose_name_plural": "Platform Income",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                ("provider", models.CharField(default="stripe", help_text="Event source", max_length=20)),
                (
                    "event_id",
                    models.CharField(
                        help_text="Provider event ID (evt_xxx) - unique constraint for dedup",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        db_index=True,
                        help_text="Provider event type (e.g., 'payment_intent.succeeded')",
                        max_length=100,
                    ),
                ),
                (
                    "account_id",
                    models.CharField(
                        blank=True,
                        help_text="Connected account ID from the Stripe-Account header",
                        max_length=255,
                    ),
                ),
                ("payload", models.JSONField(help_text="Verified event payload (JSON)")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("received", "Received"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="received",
                        help_text="Current processing status",
                        max_length=20,
                    ),
                ),
                (
                    "attempts",
                    models.PositiveSmallIntegerField(
                        default=0, help_text="Number of processing attempts"
                    ),
                ),
                (
                    "last_error",
                    models.TextField(
                        blank=True, help_text="Error message from the last failed attempt"
                    ),
                ),
                (
                    "last_attempt_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the last processing attempt started",
                        null=True,
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the event was successfully processed",
                        null=True,
                    ),
                ),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="escrow_webh_status_91c2d4_idx"),
                    models.Index(fields=["status", "attempts"], name="escrow_webh_status_e07b6a_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="AuditLog",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "actor_role",
                    models.CharField(
                        choices=[
                            ("attorney", "Attorney"),
                            ("paralegal", "Paralegal"),
                            ("admin", "Admin"),
                            ("system", "System"),
                        ],
                        default="system",
                        help_text="Role of the actor at the time of the action",
                        max_length=20,
                    ),
                ),
                (
                    "action",
                    models.CharField(db_index=True, help_text="Dotted action name", max_length=120),
                ),
                (
                    "target_type",
                    models.CharField(
                        choices=[
                            ("user", "User"),
                            ("case", "Case"),
                            ("message", "Message"),
                            ("payment", "Payment"),
                            ("dispute", "Dispute"),
                            ("document", "Document"),
                            ("other", "Other"),
                        ],
                        default="other",
                        help_text="Kind of object acted on",
                        max_length=20,
                    ),
                ),
                (
                    "target_id",
                    models.CharField(
                        blank=True, help_text="Identifier of the object acted on", max_length=255
                    ),
                ),
                ("ip", models.GenericIPAddressField(blank=True, help_text="Client IP address", null=True)),
                (
                    "user_agent",
                    models.CharField(blank=True, help_text="Client User-Agent header", max_length=512),
                ),
                ("method", models.CharField(blank=True, help_text="HTTP method", max_length=10)),
                ("path", models.CharField(blank=True, help_text="Request path", max_length=500)),
                (
                    "meta",
                    models.JSONField(blank=True, default=dict, help_text="Action-specific details"),
                ),
                (
                    "actor",
                    models.ForeignKey(
                        blank=True,
                        help_text="User who performed the action (null for system actions)",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="audit_entries",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "case",
                    models.ForeignKey(
                        blank=True,
                        help_text="Related case, if any",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="audit_entries",
                        to="escrow.case",
                    ),
                ),
            ],
            options={
                "verbose_name": "Audit Log",
                "verbose_name_plural": "Audit Log",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["case", "created_at"], name="escrow_audi_case_id_6a0c11_idx"),
                    models.Index(fields=["action", "created_at"], name="escrow_audi_action_d2e845_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="ConnectedAccount",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "metadata",
                    models.JSONField(
                        blank=True, default=dict, help_text="Flexible key-value metadata storage"
                    ),
                ),
                (
                    "stripe_account_id",
                    models.CharField(
                        help_text="Stripe Account ID (acct_xxx)", max_length=255, unique=True
                    ),
                ),
                (
                    "onboarding_status",
                    models.CharField(
                        choices=[
                            ("not_started", "Not Started"),
                            ("in_progress", "In Progress"),
                            ("complete", "Complete"),
                            ("rejected", "Rejected"),
                        ],
                        db_index=True,
                        default="not_started",
                        help_text="Current Stripe Connect onboarding status",
                        max_length=20,
                    ),
                ),
                (
                    "payouts_enabled",
                    models.BooleanField(
                        default=False,
                        help_text="Whether Stripe has enabled payouts for this account",
                    ),
                ),
                (
                    "charges_enabled",
                    models.BooleanField(
                        default=False,
                        help_text="Whether Stripe has enabled charges for this account",
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "user",
                    models.OneToOneField(
                        help_text="Paralegal this connected account belongs to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="connected_account",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Connected Account",
                "verbose_name_plural": "Connected Accounts",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="CaseFile",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                ("storage_key", models.CharField(help_text="Object store key", max_length=512)),
                ("original_name", models.CharField(help_text="File name as uploaded", max_length=255)),
                (
                    "mime_type",
                    models.CharField(blank=True, help_text="MIME type reported at upload", max_length=120),
                ),
                (
                    "size_bytes",
                    models.PositiveBigIntegerField(default=0, help_text="Object size in bytes"),
                ),
                (
                    "case",
                    models.ForeignKey(
                        help_text="Case this document belongs to",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="files",
                        to="escrow.case",
                    ),
                ),
                (
                    "uploaded_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="User who uploaded the file",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Case File",
                "verbose_name_plural": "Case Files",
                "ordering": ["created_at"],
            },
        ),
        migrations.CreateModel(
            name="CaseMessage",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                ("body", models.TextField(blank=True, help_text="Message text")),
                (
                    "attachment_key",
                    models.CharField(
                        blank=True, help_text="Object store key of the attachment", max_length=512
                    ),
                ),
                (
                    "attachment_name",
                    models.CharField(
                        blank=True, help_text="Original attachment file name", max_length=255
                    ),
                ),
                (
                    "case",
                    models.ForeignKey(
                        help_text="Case this message belongs to",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="messages",
                        to="escrow.case",
                    ),
                ),
                (
                    "sender",
                    models.ForeignKey(
                        help_text="User who sent the message",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Case Message",
                "verbose_name_plural": "Case Messages",
                "ordering": ["created_at"],
            },
        ),
    ]
