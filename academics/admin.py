from django.contrib import admin
from .models import ClassSubject, Grade, Level, SchoolClass, Subject, SubjectComment

admin.site.register(Level)
admin.site.register(Subject)


@admin.register(SchoolClass)
class SchoolClassAdmin(admin.ModelAdmin):
    list_display = ('name','level')
    list_filter = ('level',)


@admin.register(ClassSubject)
class ClassSubjectAdmin(admin.ModelAdmin):
    list_display = ('school_class','subject','coefficient','is_optional')
    list_filter = ('school_class',)


@admin.register(Grade)
class GradeAdmin(admin.ModelAdmin):
    list_display = ('student','subject','term','academic_year','average_subject')
    list_filter = ('term','academic_year','subject')
    search_fields = ('student__first_name','student__last_name')
    readonly_fields = ('average_interro','average_subject')


@admin.register(SubjectComment)
class SubjectCommentAdmin(admin.ModelAdmin):
    list_display = ('student','subject','term','teacher')
