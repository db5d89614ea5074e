import logging

from apps.audit.models import AuditLog
from apps.common.permissions import resolve_role

logger = logging.getLogger(__name__)


def record_audit(*, actor, action, entity_type, entity_id, payload=None):
    role = resolve_role(actor) if actor is not None else ""
    logger.info("%s %s=%s by %s", action, entity_type, entity_id, getattr(actor, "username", "system"))
    return AuditLog.objects.create(
        actor=actor,
        actor_role=role,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        payload=payload or {},
    )


def audit_trail(*, entity_type, entity_id):
    return AuditLog.objects.for_entity(entity_type, entity_id).select_related("actor")
