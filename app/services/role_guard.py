from enum import Enum
from typing import Dict, FrozenSet, Optional
from pydantic import BaseModel, ConfigDict
import logging

from ..core.exceptions import AuthorizationError
from ..core.security import Identity, UserRole

logger = logging.getLogger(__name__)


class Action(str, Enum):
    BOOK = "book"
    VIEW = "view"
    CANCEL = "cancel"
    COMPLETE = "complete"


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


class Scope(str, Enum):
    """Which field of the resource owner must equal the caller's subject."""
    CLIENT = "client"
    PRACTITIONER = "practitioner"
    ANY = "any"


class ResourceOwner(BaseModel):
    model_config = ConfigDict(frozen=True)

    client_id: Optional[str] = None
    practitioner_id: Optional[str] = None


class Grant(BaseModel):
    """Proof that RoleGuard allowed ``action`` for ``identity`` on ``owner``."""
    model_config = ConfigDict(frozen=True)

    identity: Identity
    action: Action
    owner: ResourceOwner

    def ensure(self, action: Action) -> None:
        if self.action is not action:
            raise RuntimeError(
                f"Grant for '{self.action.value}' used for '{action.value}'"
            )


# Capability table
CAPABILITIES: Dict[UserRole, Dict[Action, Scope]] = {
    UserRole.PATIENT: {
        Action.BOOK: Scope.CLIENT,
        Action.VIEW: Scope.CLIENT,
        Action.CANCEL: Scope.CLIENT,
    },
    UserRole.DOCTOR: {
        Action.VIEW: Scope.PRACTITIONER,
        Action.CANCEL: Scope.PRACTITIONER,
        Action.COMPLETE: Scope.PRACTITIONER,
    },
    UserRole.ADMIN: {action: Scope.ANY for action in Action},
}


def allowed_actions(role: UserRole) -> FrozenSet[Action]:
    return frozenset(CAPABILITIES[role])


class RoleGuard:
    def __init__(self, capabilities: Dict[UserRole, Dict[Action, Scope]] = CAPABILITIES):
        self.capabilities = capabilities

    def authorize(self, identity: Identity, action: Action, owner: ResourceOwner) -> Decision:
        """Evaluate the capability table for one action on one resource owner."""
        scope = self.capabilities.get(identity.role, {}).get(action)
        if scope is None:
            return Decision.DENY

        if scope is Scope.ANY:
            return Decision.ALLOW
        if scope is Scope.CLIENT and owner.client_id == identity.subject:
            return Decision.ALLOW
        if scope is Scope.PRACTITIONER and owner.practitioner_id == identity.subject:
            return Decision.ALLOW

        return Decision.DENY

    def require(self, identity: Identity, action: Action, owner: ResourceOwner) -> Grant:
        """Return a grant for an allowed action, raise AuthorizationError otherwise."""
        if self.authorize(identity, action, owner) is Decision.DENY:
            logger.warning(
                f"Denied {action.value} for {identity.role.value} '{identity.subject}' "
                f"on client={owner.client_id} practitioner={owner.practitioner_id}"
            )
            raise AuthorizationError(
                f"Role '{identity.role.value}' may not {action.value} this appointment"
            )
        return Grant(identity=identity, action=action, owner=owner)
