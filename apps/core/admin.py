"""
Django admin configuration for core app.
"""
from django.contrib import admin


# Customize admin site header and title
admin.site.site_header = "Hospital Access Control Administration"
admin.site.site_title = "Hospital Admin"
admin.site.index_title = "Roles, permissions and audit trail"
