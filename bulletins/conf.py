"""
Configuration of the bulletins app.

Every value can be overridden in Django settings with the BULLETINS_ prefix,
e.g. ``BULLETINS_DOCUMENT_TTL = 3600``. Values are read lazily so the module
can be imported before settings are configured.
"""

_DEFAULTS = {
    # Soumission tolérée malgré des notes manquantes, par trimestre
    'ALLOW_GAPS': {'T1': True, 'T2': True, 'T3': False},
    # Revalider les notes figées avant approbation
    'REQUIRE_COMPLETE_FOR_APPROVAL': False,

    # Données de document mises en cache entre approbation et publication
    'DOCUMENT_CACHE': 'default',
    'DOCUMENT_TTL': 24 * 3600,  # seconds

    'SCHOOL_INFO': {},
}


def get_setting(name):
    from django.conf import settings

    if name not in _DEFAULTS:
        raise AttributeError(f"Unknown bulletins setting: {name}")
    return getattr(settings, f'BULLETINS_{name}', _DEFAULTS[name])
