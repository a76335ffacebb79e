"""
System check that every permission a view requires exists in the registry.

Permission names are plain strings, so a typo in a view would otherwise
fail closed for everyone except super admins without any error.
"""
from django.core.checks import Error, register
from django.urls import URLPattern, URLResolver, get_resolver

from apps.rbac.registry import PERMISSION_NAMES

HTTP_METHODS = ('get', 'post', 'put', 'patch', 'delete')


def _iter_view_classes(patterns):
    for pattern in patterns:
        if isinstance(pattern, URLResolver):
            yield from _iter_view_classes(pattern.url_patterns)
        elif isinstance(pattern, URLPattern):
            view_class = getattr(pattern.callback, 'view_class', None) or getattr(pattern.callback, 'cls', None)
            if view_class is not None:
                yield view_class


def _declared_permissions(view_class):
    declared = set(getattr(view_class, 'required_permissions', None) or ())
    for method in HTTP_METHODS:
        handler = getattr(view_class, method, None)
        declared.update(getattr(handler, 'required_permissions', None) or ())
    return declared


@register('rbac')
def check_required_permissions(app_configs, **kwargs):
    errors = []
    seen = set()
    for view_class in _iter_view_classes(get_resolver().url_patterns):
        if view_class in seen:
            continue
        seen.add(view_class)
        for name in sorted(_declared_permissions(view_class) - PERMISSION_NAMES):
            errors.append(
                Error(
                    f"{view_class.__module__}.{view_class.__name__} requires unknown permission '{name}'.",
                    hint='Add it to apps.rbac.registry.CANONICAL_PERMISSIONS or fix the name.',
                    obj=view_class,
                    id='rbac.E001',
                )
            )
    return errors
