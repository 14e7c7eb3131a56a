from django.contrib import admin
from .models import Parent, Student, Teacher


@admin.register(Student)
class StudentAdmin(admin.ModelAdmin):
    list_display = ('id','first_name','last_name','school_class','parent')
    list_filter = ('school_class',)
    search_fields = ('id','first_name','last_name')


@admin.register(Parent)
class ParentAdmin(admin.ModelAdmin):
    list_display = ('id','first_name','last_name','phone','preferred_language')
    search_fields = ('id','first_name','last_name','phone')


@admin.register(Teacher)
class TeacherAdmin(admin.ModelAdmin):
    list_display = ('id','first_name','last_name','subject')
