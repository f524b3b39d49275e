# FILE: /academy/apps/courses/admin.py
from django.contrib import admin

from .models import Course, Enrollment, InstructorEarning


@admin.register(Course)
class CourseAdmin(admin.ModelAdmin):
    list_display = ('title', 'instructor', 'price', 'discount_price', 'currency', 'status')
    list_filter = ('status', 'currency')
    search_fields = ('title', 'slug')
    prepopulated_fields = {'slug': ('title',)}


@admin.register(Enrollment)
class EnrollmentAdmin(admin.ModelAdmin):
    list_display = ('user', 'course', 'purchase', 'created_at')
    raw_id_fields = ('user', 'course', 'purchase')


@admin.register(InstructorEarning)
class InstructorEarningAdmin(admin.ModelAdmin):
    list_display = ('instructor', 'amount', 'currency', 'purchase', 'created_at')
    readonly_fields = ('instructor', 'purchase', 'amount', 'currency', 'created_at')
