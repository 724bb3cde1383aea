from app.core.config import settings


def is_owner(tg_id: int) -> bool:
    return int(tg_id) == int(settings.owner_tg_id)


def is_admin(tg_id: int) -> bool:
    """Owner or one of ADMIN_TG_IDS. Destructive actions stay owner-only."""
    return is_owner(tg_id) or int(tg_id) in set(settings.admin_tg_ids)
