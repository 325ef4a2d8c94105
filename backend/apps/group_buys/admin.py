# apps/group_buys/admin.py

from django.contrib import admin, messages
from django.utils.html import format_html
from .models import GroupBuy, GroupParticipant, GroupUpdate
from .services.participation_service import ParticipationService


class GroupParticipantInline(admin.TabularInline):
    """Ledger rows are changed only through the participation service."""
    model = GroupParticipant
    extra = 0
    can_delete = False
    fields = ('user', 'quantity', 'contact_info', 'order', 'joined_at')
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(GroupBuy)
class GroupBuyAdmin(admin.ModelAdmin):
    list_display = (
        'title',
        'status_display',
        'progress_display',
        'price',
        'auto_renew',
        'is_hot',
        'parent_group',
        'created_at'
    )
    list_filter = (
        'status',
        'auto_renew',
        'is_hot',
        'created_at'
    )
    search_fields = (
        'title',
    )
    readonly_fields = (
        'current_count',
        'status',
        'status_forced',
        'parent_group',
        'created_at',
        'updated_at'
    )
    inlines = [GroupParticipantInline]

    fieldsets = (
        ('Offer', {
            'fields': (
                'title',
                'description',
                'price',
                'features',
                'image_url'
            )
        }),
        ('Capacity', {
            'fields': (
                'target_count',
                'current_count',
                'status',
                'status_forced'
            )
        }),
        ('Series', {
            'fields': (
                'auto_renew',
                'is_hot',
                'parent_group'
            )
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at')
        })
    )

    def status_display(self, obj):
        colors = {
            'open': 'green',
            'locked': 'orange',
            'ended': 'gray'
        }
        color = colors.get(obj.status, 'black')
        label = obj.get_status_display()
        if obj.status_forced:
            label = f"{label} (forced)"
        return format_html(
            '<span style="background-color: {}; color: white; padding: 3px 8px; border-radius: 3px;">{}</span>',
            color,
            label
        )
    status_display.short_description = 'Status'

    def progress_display(self, obj):
        return f"{obj.current_count}/{obj.target_count}"
    progress_display.short_description = 'Slots'

    actions = ['end_groups', 'release_status_overrides', 'reconcile_counts']

    def _apply(self, request, queryset, operation, done_message):
        service = ParticipationService()
        done = 0
        for group in queryset:
            result = operation(service, group.id)
            if result.success:
                done += 1
            else:
                self.message_user(
                    request, f'{group.title}: {result.error}', level=messages.WARNING
                )
        self.message_user(request, done_message.format(done))

    def end_groups(self, request, queryset):
        self._apply(
            request, queryset,
            lambda service, pk: service.admin_force_status(pk, GroupBuy.STATUS_ENDED, reason='admin'),
            '{} group(s) ended.'
        )
    end_groups.short_description = 'End selected groups'

    def release_status_overrides(self, request, queryset):
        self._apply(
            request, queryset.filter(status_forced=True),
            lambda service, pk: service.release_status_override(pk),
            'Released forced status on {} group(s).'
        )
    release_status_overrides.short_description = 'Release forced status'

    def reconcile_counts(self, request, queryset):
        self._apply(
            request, queryset,
            lambda service, pk: service.reconcile_group(pk),
            'Recounted {} group(s).'
        )
    reconcile_counts.short_description = 'Recount slots from participants'


@admin.register(GroupUpdate)
class GroupUpdateAdmin(admin.ModelAdmin):
    list_display = (
        'group',
        'event_type',
        'created_at'
    )
    list_filter = (
        'event_type',
        'created_at'
    )
    search_fields = (
        'group__title',
    )
    readonly_fields = (
        'group',
        'event_type',
        'event_data',
        'created_at'
    )

    def has_add_permission(self, request):
        # These are system-generated events
        return False
