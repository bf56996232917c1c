"""Dashboard route decision and route guard over the auth state."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import urlencode

from src.otic.auth.models import AuthState, AuthStatus, ProfileStatus, UserType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RouteTable:
    """Paths the auth core routes users to."""

    sign_in: str = "/signin"
    business_dashboard: str = "/dashboard"
    individual_dashboard: str = "/individual-dashboard"
    account_setup: str = "/account-setup"
    public: frozenset[str] = field(
        default_factory=lambda: frozenset(
            {"/", "/signin", "/signup", "/business-signin", "/individual-signin", "/auth/callback"}
        )
    )

    @classmethod
    def from_settings(cls, settings) -> "RouteTable":
        """Build the route table from application settings."""
        public = {path.strip() for path in settings.public_routes.split(",") if path.strip()}
        return cls(
            sign_in=settings.sign_in_route,
            business_dashboard=settings.business_dashboard_route,
            individual_dashboard=settings.individual_dashboard_route,
            account_setup=settings.account_setup_route,
            public=frozenset(public | {settings.sign_in_route, settings.oauth_callback_route}),
        )

    def dashboard_for(self, user_type: UserType) -> str:
        if user_type == UserType.BUSINESS:
            return self.business_dashboard
        return self.individual_dashboard


def dashboard_route(state: AuthState, routes: RouteTable) -> str:
    """
    Where a user in `state` belongs.

    Routing depends only on the user type; tier gates features inside
    pages and never changes the route. While loading, the neutral
    account-setup route is returned so nothing is decided prematurely.

    Example:
        >>> dashboard_route(AuthState.unauthenticated(), RouteTable())
        '/signin'
    """
    if state.status == AuthStatus.UNAUTHENTICATED:
        return routes.sign_in
    if state.loading:
        return routes.account_setup
    if state.profile_status == ProfileStatus.READY and state.profile is not None:
        return routes.dashboard_for(state.profile.user_type)
    return routes.account_setup


class GuardAction(str, Enum):
    """What the UI should do for a requested path."""

    LOADING = "loading"
    REDIRECT = "redirect"
    RENDER = "render"


@dataclass(frozen=True)
class GuardDecision:
    """Outcome of guarding one navigation."""

    action: GuardAction
    target: str | None = None
    show_verification_reminder: bool = False


class RouteGuard:
    """
    Side-effect-free consumer of `AuthState` deciding navigation.

    - Loading: show a placeholder, navigate nowhere.
    - Unauthenticated on a protected path: go to sign-in, carrying the
      requested path as `next`.
    - Profile unavailable: go to the account-setup page.
    - Profile ready but email unverified: render, with a non-blocking
      verification reminder.
    """

    def __init__(self, routes: RouteTable) -> None:
        self.routes = routes

    def decide(self, path: str, state: AuthState) -> GuardDecision:
        if path == self.routes.sign_in and self._is_ready(state):
            return GuardDecision(GuardAction.REDIRECT, target=dashboard_route(state, self.routes))

        if path in self.routes.public:
            return GuardDecision(GuardAction.RENDER)

        if state.loading:
            return GuardDecision(GuardAction.LOADING)

        if state.status != AuthStatus.AUTHENTICATED:
            target = f"{self.routes.sign_in}?{urlencode({'next': path})}"
            return GuardDecision(GuardAction.REDIRECT, target=target)

        if not self._is_ready(state):
            if path == self.routes.account_setup:
                return GuardDecision(GuardAction.RENDER)
            return GuardDecision(GuardAction.REDIRECT, target=self.routes.account_setup)

        return GuardDecision(
            GuardAction.RENDER, show_verification_reminder=not state.email_verified
        )

    @staticmethod
    def _is_ready(state: AuthState) -> bool:
        return (
            state.status == AuthStatus.AUTHENTICATED
            and state.profile_status == ProfileStatus.READY
            and state.profile is not None
        )
