from backend.app.models.user import User
from backend.app.models.credential import Credential
from backend.app.models.vault_item import VaultItem
from backend.app.models.challenge import ChallengeSession

__all__ = ["User", "Credential", "VaultItem", "ChallengeSession"]
