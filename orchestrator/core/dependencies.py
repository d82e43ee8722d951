"""Dependency injection and singleton initialization"""
from orchestrator.config import get_settings
from orchestrator.core.state_manager import state_manager
from orchestrator.core.locks import JoinLockManager
from orchestrator.core.factories import (OwnerTrustAuthorizer, StateBuildFactory,
                                         StateEventFactory, StateJobFactory,
                                         StatePipelineFactory)
from orchestrator.core.triggers import TriggerResolver
from orchestrator.core.dispatcher import TriggerDispatcher

# Singletons - initialized once on startup
_lock_manager = None
_dispatcher = None


def get_lock_manager() -> JoinLockManager:
    """Get or create JoinLockManager singleton"""
    global _lock_manager
    if _lock_manager is None:
        settings = get_settings()
        _lock_manager = JoinLockManager(
            redis=state_manager().redis,
            ttl=settings.lock_ttl_seconds,
            timeout=settings.lock_timeout_seconds)
    return _lock_manager


def get_dispatcher() -> TriggerDispatcher:
    """Get or create TriggerDispatcher singleton"""
    global _dispatcher
    if _dispatcher is None:
        state = state_manager()
        events = StateEventFactory(state)
        resolver = TriggerResolver(state,
                                   events=events,
                                   builds=StateBuildFactory(state),
                                   locks=get_lock_manager(),
                                   authorizer=OwnerTrustAuthorizer())
        _dispatcher = TriggerDispatcher(
            resolver,
            pipelines=StatePipelineFactory(state),
            jobs=StateJobFactory(state),
            events=events,
            max_depth=get_settings().max_virtual_depth)
    return _dispatcher


def reset_dependencies() -> None:
    """Drop singletons so they are rebuilt against the current state"""
    global _lock_manager, _dispatcher
    _lock_manager = None
    _dispatcher = None
