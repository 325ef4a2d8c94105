# apps/orders/admin.py

from django.contrib import admin
from django.utils.html import format_html
from .models import Order


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        'reference_number',
        'user',
        'item_type',
        'item_name',
        'quantity',
        'cost',
        'status_display',
        'created_at'
    )
    list_filter = (
        'status',
        'item_type',
        'created_at'
    )
    search_fields = (
        'reference_number',
        'user__email',
        'item_name',
        'contact_details'
    )
    readonly_fields = (
        'reference_number',
        'group',
        'quantity',
        'cost',
        'created_at',
        'updated_at'
    )

    fieldsets = (
        ('Order Information', {
            'fields': (
                'reference_number',
                'user',
                'item_type',
                'item_name',
                'group',
                'status'
            )
        }),
        ('Amounts', {
            'fields': (
                'quantity',
                'cost',
                'currency'
            )
        }),
        ('Contact', {
            'fields': (
                'contact_details',
                'notes'
            )
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at')
        })
    )

    def status_display(self, obj):
        colors = {
            'pending': 'orange',
            'contacted': 'blue',
            'completed': 'green',
            'cancelled': 'gray'
        }
        color = colors.get(obj.status, 'black')
        return format_html(
            '<span style="color: {}; font-weight: bold;">{}</span>',
            color,
            obj.get_status_display()
        )
    status_display.short_description = 'Status'

    actions = ['mark_contacted', 'mark_completed']

    def mark_contacted(self, request, queryset):
        updated = queryset.filter(status=Order.STATUS_PENDING).update(status=Order.STATUS_CONTACTED)
        self.message_user(request, f'{updated} order(s) marked as contacted.')
    mark_contacted.short_description = 'Mark as contacted'

    def mark_completed(self, request, queryset):
        updated = queryset.exclude(status=Order.STATUS_CANCELLED).update(status=Order.STATUS_COMPLETED)
        self.message_user(request, f'{updated} order(s) marked as completed.')
    mark_completed.short_description = 'Mark as completed'
