from typing import Optional
from django.utils import timezone
from django.contrib.auth import get_user_model

User = get_user_model()


def _actor(user) -> Optional[User]:
    return user if isinstance(user, User) and getattr(user, 'pk', None) else None


def stamp(instance, actor=None, *, now=None):
    """Fill the audit columns of ``instance`` before it is saved.

    New rows (no ``created_at`` yet) get both creation and update
    columns; existing rows only get the update columns.  Returns the
    list of touched field names for use with ``save(update_fields=...)``.
    """
    now = now or timezone.now()
    actor = _actor(actor)
    touched = ['updated_at', 'updated_by']
    if instance.created_at is None:
        instance.created_at = now
        instance.created_by = actor
        touched += ['created_at', 'created_by']
    instance.updated_at = now
    instance.updated_by = actor
    return touched


def soft_delete(instance, actor=None, *, now=None):
    now = now or timezone.now()
    instance.deleted_at = now
    fields = stamp(instance, actor, now=now)
    instance.save(update_fields=fields + ['deleted_at'])
    return instance
