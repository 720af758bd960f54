from functools import lru_cache

from app.core.config import settings
from app.services.apns import PushDispatcher, PushProvider, create_push_provider
from app.services.asset_lock import AssetLockManager
from app.services.assets import TemplateWorkspace
from app.services.pass_generator import PassRegenerator, create_pass_regenerator


@lru_cache
def get_asset_lock_manager() -> AssetLockManager:
    return AssetLockManager(timeout=settings.asset_lock_timeout)


@lru_cache
def get_template_workspace() -> TemplateWorkspace:
    return TemplateWorkspace(
        template_dir=settings.pass_template_dir,
        lock_manager=get_asset_lock_manager(),
        isolate=settings.isolate_pass_assets,
        work_dir=settings.pass_work_dir,
    )


@lru_cache
def get_pass_regenerator() -> PassRegenerator:
    return create_pass_regenerator(get_template_workspace())


@lru_cache
def get_push_provider() -> PushProvider:
    return create_push_provider()


@lru_cache
def get_push_dispatcher() -> PushDispatcher:
    return PushDispatcher(get_push_provider(), send_timeout=settings.apns_send_timeout)
