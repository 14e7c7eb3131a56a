from django.contrib import admin
from .models import Bulletin, BulletinSignature, BulletinTransition


class BulletinTransitionInline(admin.TabularInline):
    model = BulletinTransition
    extra = 0
    readonly_fields = ('from_status','to_status','actor','comment','created_at')


@admin.register(Bulletin)
class BulletinAdmin(admin.ModelAdmin):
    list_display = ('student','school_class','term','academic_year','general_average','class_rank','status')
    list_filter = ('status','term','academic_year','school_class')
    search_fields = ('student__first_name','student__last_name','student__id')
    readonly_fields = ('subject_snapshot','version','grades_frozen_at')
    inlines = [BulletinTransitionInline]


@admin.register(BulletinSignature)
class BulletinSignatureAdmin(admin.ModelAdmin):
    list_display = ('bulletin','signer_name','signer_position','has_stamp','signed_at')
    search_fields = ('signer_name','verification_code')
