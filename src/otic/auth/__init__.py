"""Authentication core: session store, profile resolver, recovery and orchestrator."""

from src.otic.auth.dependencies import (
    get_orchestrator,
    require_authenticated_route,
    set_orchestrator,
)
from src.otic.auth.exceptions import (
    MalformedResponseError,
    OrchestratorNotInitializedError,
    OticAuthError,
)
from src.otic.auth.models import AuthState, AuthStatus, Profile, ProfileStatus, Session, Tier, UserType
from src.otic.auth.orchestrator import AuthOrchestrator
from src.otic.auth.profile_resolver import ProfileResolver, SupabaseProfileStore
from src.otic.auth.providers import SupabaseIdentityProvider
from src.otic.auth.recovery import AccountRecoveryChecker
from src.otic.auth.routing import RouteGuard, RouteTable, dashboard_route
from src.otic.auth.session_store import SessionStore
from src.otic.auth.storage import FileSessionStorage, MemorySessionStorage

__all__ = [
    "AccountRecoveryChecker",
    "AuthOrchestrator",
    "AuthState",
    "AuthStatus",
    "FileSessionStorage",
    "MalformedResponseError",
    "MemorySessionStorage",
    "OrchestratorNotInitializedError",
    "OticAuthError",
    "Profile",
    "ProfileResolver",
    "ProfileStatus",
    "RouteGuard",
    "RouteTable",
    "Session",
    "SessionStore",
    "SupabaseIdentityProvider",
    "SupabaseProfileStore",
    "Tier",
    "UserType",
    "dashboard_route",
    "get_orchestrator",
    "require_authenticated_route",
    "set_orchestrator",
]
