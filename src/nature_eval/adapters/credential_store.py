"""Credential lookup backed by application settings."""

from dataclasses import dataclass

from nature_eval.config import Settings
from nature_eval.domain.errors import MissingCredentialError
from nature_eval.services.pipeline import CredentialStore


@dataclass
class SettingsCredentialStore(CredentialStore):
    settings: Settings

    def get_credential(self, provider_id: str) -> str:
        """Return the API key for a provider."""
        keys = {
            "anthropic": self.settings.anthropic_api_key,
            "openai": self.settings.openai_api_key,
        }
        key = keys.get(provider_id)
        if not key:
            raise MissingCredentialError(provider_id)
        return key
