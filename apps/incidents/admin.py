"""Admin configuration for incident models."""

from django.contrib import admin
from django.db import models as db_models
from django.utils.html import format_html
from django.utils.safestring import mark_safe
from django_json_widget.widgets import JSONEditorWidget
from django_object_actions import DjangoObjectActions
from django_object_actions import action as object_action

from apps.incidents.exceptions import IncidentError
from apps.incidents.models import (
    AuditRecord,
    Batch,
    CorrectionRecord,
    Incident,
    IncidentStatus,
    IncidentTransition,
    RejectionRecord,
)

ADMIN_REJECTION_REASON = "Rejected via admin"


class ReadOnlyInline(admin.TabularInline):
    extra = 0
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False


class IncidentTransitionInline(ReadOnlyInline):
    model = IncidentTransition
    fields = ["created_at", "event", "from_status", "to_status", "actor", "detail"]
    readonly_fields = fields


class AuditRecordInline(ReadOnlyInline):
    model = AuditRecord
    fk_name = "incident"
    fields = ["run_number", "trace_id", "execution_backend", "credits_used", "total_duration_ms", "created_at"]
    readonly_fields = fields
    show_change_link = True


class RejectionRecordInline(ReadOnlyInline):
    model = RejectionRecord
    fields = ["created_at", "actor", "reason", "previous_status", "suggested_corrections"]
    readonly_fields = fields


class CorrectionRecordInline(ReadOnlyInline):
    model = CorrectionRecord
    fields = ["created_at", "actor", "corrections", "original_snapshot"]
    readonly_fields = fields


@admin.register(Incident)
class IncidentAdmin(DjangoObjectActions, admin.ModelAdmin):
    """Admin for Incident model."""

    list_display = [
        "id",
        "submitter",
        "status",
        "severity_label",
        "severity_score",
        "incident_type",
        "route",
        "human_review_required",
        "run_count",
        "created_at",
    ]
    list_filter = ["status", "severity_label", "incident_type", "route", "human_review_required"]
    search_fields = ["id", "submitter", "text", "workflow_job_id"]
    readonly_fields = [
        "id",
        "status",
        "lifecycle",
        "severity_score",
        "severity_label",
        "incident_type",
        "route",
        "rules_triggered",
        "assigned_team",
        "human_review_required",
        "run_count",
        "workflow_job_id",
        "batch",
        "batch_index",
        "created_at",
        "updated_at",
        "completed_at",
    ]
    formfield_overrides = {db_models.JSONField: {"widget": JSONEditorWidget}}
    inlines = [
        IncidentTransitionInline,
        AuditRecordInline,
        RejectionRecordInline,
        CorrectionRecordInline,
    ]
    actions = ["reprocess_selected"]
    change_actions = ["reject_incident", "reprocess_incident"]

    fieldsets = [
        ("Identification", {"fields": ["id", "lifecycle", "submitter", "batch", "batch_index"]}),
        (
            "Submission",
            {"fields": ["text", "declared_type", "image_refs", "audio_refs", "video_refs"]},
        ),
        (
            "Decision",
            {
                "fields": [
                    "status",
                    "severity_score",
                    "severity_label",
                    "incident_type",
                    "route",
                    "rules_triggered",
                    "assigned_team",
                    "human_review_required",
                ]
            },
        ),
        (
            "Analysis",
            {"fields": ["summary", "recommended_actions", "urgency", "extracted_fields"]},
        ),
        (
            "Review",
            {
                "fields": ["rejection_reason", "correction_data", "error_message"],
                "classes": ["collapse"],
            },
        ),
        (
            "Timestamps",
            {"fields": ["run_count", "workflow_job_id", "created_at", "updated_at", "completed_at"]},
        ),
    ]

    @admin.action(description="Reprocess selected pending incidents")
    def reprocess_selected(self, request, queryset):
        from apps.orchestration.corrections import reprocess

        count = 0
        for incident in queryset.filter(status=IncidentStatus.PENDING_REPROCESS):
            reprocess(incident.pk, actor=request.user.get_username())
            count += 1
        self.message_user(request, f"{count} incident(s) reprocessed.")

    @object_action(label="Reject", description="Reject this incident for correction")
    def reject_incident(self, request, obj):
        from apps.orchestration.corrections import reject

        try:
            reject(obj.pk, ADMIN_REJECTION_REASON, actor=request.user.get_username())
        except IncidentError as e:
            self.message_user(request, str(e), level="warning")
            return
        self.message_user(request, f"Incident '{obj.pk}' rejected.")

    @object_action(label="Reprocess", description="Run the pipeline again on the corrected incident")
    def reprocess_incident(self, request, obj):
        from apps.orchestration.corrections import reprocess

        try:
            outcome = reprocess(obj.pk, actor=request.user.get_username())
        except IncidentError as e:
            self.message_user(request, str(e), level="warning")
            return
        self.message_user(request, f"Incident '{obj.pk}' reprocessed: {outcome.status}.")

    @admin.display(description="Lifecycle")
    def lifecycle(self, obj):
        """Render the transition history as a horizontal flow."""
        colors = {
            IncidentStatus.PROCESSING: "#ffc107",
            IncidentStatus.COMPLETED: "#28a745",
            IncidentStatus.FAILED: "#dc3545",
            IncidentStatus.PENDING_REPROCESS: "#17a2b8",
        }
        parts = [
            format_html(
                '<span style="color:{};font-size:12px;">{}</span>',
                colors.get(t.to_status, "#ccc"),
                t.get_event_display(),
            )
            for t in obj.transitions.all()
        ]
        arrow = mark_safe('<span style="color:#999;margin:0 4px;">→</span>')
        return format_html(
            '<div style="display:flex;align-items:center;padding:8px 0;">{}</div>',
            mark_safe(arrow.join(parts)),
        )


@admin.register(Batch)
class BatchAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "submitter",
        "status",
        "total_count",
        "processed_count",
        "failed_count",
        "parallel",
        "processing_duration_ms",
        "created_at",
    ]
    list_filter = ["status", "parallel"]
    search_fields = ["id", "submitter"]
    readonly_fields = [
        "status",
        "total_count",
        "processed_count",
        "failed_count",
        "processing_duration_ms",
        "sequential_estimate_ms",
        "retry_of",
        "created_at",
        "updated_at",
        "completed_at",
    ]


@admin.register(AuditRecord)
class AuditRecordAdmin(admin.ModelAdmin):
    """Read-only admin for audit records."""

    list_display = ["incident", "run_number", "trace_id", "execution_backend", "credits_used", "created_at"]
    list_filter = ["execution_backend"]
    search_fields = ["incident__id", "trace_id"]
    formfield_overrides = {db_models.JSONField: {"widget": JSONEditorWidget}}

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("incident", "previous_record")

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
