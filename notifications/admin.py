from django.contrib import admin
from .models import NotificationDelivery, NotificationTemplate, UserDevice

@admin.register(NotificationTemplate)
class NotificationTemplateAdmin(admin.ModelAdmin):
    list_display = ('key','tier','channel','language','is_active')
    list_filter = ('tier','channel','language','is_active')
    search_fields = ('key',)

@admin.register(UserDevice)
class UserDeviceAdmin(admin.ModelAdmin):
    list_display = ('user','provider','token','created_at')

@admin.register(NotificationDelivery)
class NotificationDeliveryAdmin(admin.ModelAdmin):
    list_display = ('idempotency_key','channel','sent_at')
    list_filter = ('channel',)
    search_fields = ('idempotency_key','bulletin_id','recipient_id')
