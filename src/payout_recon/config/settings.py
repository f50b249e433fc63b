"""
Configuration for payout reconciliation.
Handles the allow-listed properties, their scopes, and the resolved settings
the engine runs with.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import dotenv_values, load_dotenv

from src.payout_recon.errors import ConfigError

load_dotenv(override=False)

# Convenience: allow local runs with only `.env.example` filled.
# `.env.example` contains blank placeholders for secrets; blanks never
# override real values.
if not os.environ.get("STRIPE_API_KEY"):
    example_path = os.path.abspath(".env.example")
    if os.path.exists(example_path):
        for k, v in (dotenv_values(example_path) or {}).items():
            if not k or v is None or v == "":
                continue
            if not os.environ.get(k):
                os.environ[k] = v

logger = logging.getLogger(__name__)

# Narrowest first.
SCOPE_ORDER: List[str] = ["user", "document", "script"]


@dataclass(frozen=True)
class PropertyDefinition:
    key: str
    label: str
    type: str
    required: bool
    tooltip: str
    scope: str

    @property
    def permitted_scopes(self) -> List[str]:
        """Scopes this property may live in: its declared scope and narrower."""
        declared = self.scope.lower()
        if declared not in SCOPE_ORDER:
            return []
        return SCOPE_ORDER[: SCOPE_ORDER.index(declared) + 1]


ALLOWED_PROPERTIES: List[PropertyDefinition] = [
    PropertyDefinition(
        key="STRIPE_API_KEY",
        label="Stripe API Key",
        type="password",
        required=True,
        tooltip="Your secret Stripe API key.",
        scope="script",
    ),
    PropertyDefinition(
        key="RECEIPTS_FOLDER_URL",
        label="Receipts Folder URL",
        type="url",
        required=True,
        tooltip="The Google Drive folder URL where receipts will be saved.",
        scope="document",
    ),
    PropertyDefinition(
        key="STRIPE_PAYOUT_DESCRIPTION_PREFIX",
        label="Stripe Payout Description Prefix",
        type="text",
        required=True,
        tooltip="Prefix for payout descriptions in the sheet.",
        scope="user",
    ),
    PropertyDefinition(
        key="SUMMARY_EMAIL",
        label="Summary Email",
        type="email",
        required=True,
        tooltip="Email address to receive summary reports.",
        scope="document",
    ),
    PropertyDefinition(
        key="STRIPE_INSTITUTION_NAME",
        label="Institution name on the sheet",
        type="text",
        required=False,
        tooltip="Institution name on the sheet.",
        scope="user",
    ),
    PropertyDefinition(
        key="STRIPE_PAYOUT_CATEGORY_LABEL",
        label="Payout category label",
        type="text",
        required=False,
        tooltip="Payout category label",
        scope="document",
    ),
    PropertyDefinition(
        key="STRIPE_FEE_CATEGORY_LABEL",
        label="Fee category label",
        type="text",
        required=False,
        tooltip="Fee category label",
        scope="document",
    ),
]


class ProcessPropertyStore:
    """Process-wide scope backed by the environment (.env is loaded into it)."""

    def get(self, key: str) -> Optional[str]:
        value = os.environ.get(key)
        return value if value else None

    def set(self, key: str, value: str) -> None:
        os.environ[key] = value


class JsonFilePropertyStore:
    """A flat JSON object on disk; writes go to a temp file then replace."""

    def __init__(self, path: str):
        self.path = Path(os.path.expanduser(path))

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError as e:
            logger.error("Ignoring unreadable properties file %s: %s", self.path, e)
            return {}
        return {str(k): str(v) for k, v in raw.items()} if isinstance(raw, dict) else {}

    def get(self, key: str) -> Optional[str]:
        value = self._load().get(key)
        return value if value else None

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        os.replace(tmp, self.path)


class ConfigManager:
    """Allow-listed property access across the script/document/user scopes."""

    def __init__(self, stores: Dict[str, object], definitions: Optional[List[PropertyDefinition]] = None):
        self.stores = stores
        self.definitions = {d.key: d for d in (definitions or ALLOWED_PROPERTIES)}

    @classmethod
    def from_env(cls) -> "ConfigManager":
        return cls(
            stores={
                "script": ProcessPropertyStore(),
                "document": JsonFilePropertyStore(
                    os.environ.get("RECON_DOCUMENT_PROPERTIES_PATH", ".recon_document_properties.json")
                ),
                "user": JsonFilePropertyStore(
                    os.environ.get("RECON_USER_PROPERTIES_PATH", "~/.recon_user_properties.json")
                ),
            }
        )

    def get_property(self, key: str) -> Optional[str]:
        """Return the first value found, searching narrowest scope outward."""
        definition = self.definitions.get(key)
        if definition is None:
            logger.warning('Property "%s" is not allowed.', key)
            return None

        for scope in definition.permitted_scopes:
            store = self.stores.get(scope)
            if store is None:
                continue
            value = store.get(key)
            if value is not None:
                return value
        return None

    def set_property(self, key: str, value: str, scope: str = "user") -> str:
        definition = self.definitions.get(key)
        if definition is None:
            raise ConfigError(f'Property "{key}" is not allowed.')

        normalized = (scope or "").lower()
        if normalized not in SCOPE_ORDER:
            raise ConfigError(f"Invalid scope \"{scope}\". Valid scopes are 'user', 'document', 'script'.")
        permitted = definition.permitted_scopes
        if normalized not in permitted:
            raise ConfigError(
                f'Scope "{scope}" is not permitted for property "{key}". '
                f"Allowed scopes: {', '.join(permitted)}."
            )

        store = self.stores.get(normalized)
        if store is None:
            raise ConfigError(f'No property store configured for scope "{normalized}".')
        store.set(key, value)
        return f'Property "{key}" set successfully in "{normalized}" scope.'

    def list_properties(self) -> List[dict]:
        """Definitions with their current values (empty string when unset)."""
        return [
            {
                "key": d.key,
                "label": d.label,
                "type": d.type,
                "required": d.required,
                "tooltip": d.tooltip,
                "scope": d.scope,
                "value": self.get_property(d.key) or "",
            }
            for d in self.definitions.values()
        ]

    def missing_required(self) -> List[str]:
        return [d.key for d in self.definitions.values() if d.required and not self.get_property(d.key)]


@dataclass(frozen=True)
class ReconciliationSettings:
    """Resolved labels and targets one run works with."""

    payout_description_prefix: str = "Orig Co Name:stripe Orig ID:x8598"
    institution_name: str = "Stripe"
    payout_category_label: str = "Bank Account transfer"
    fee_category_label: str = "Finance Fee"
    summary_email: Optional[str] = None
    receipts_folder_url: Optional[str] = None

    @classmethod
    def from_config(cls, manager: ConfigManager) -> "ReconciliationSettings":
        defaults = cls()
        return cls(
            payout_description_prefix=manager.get_property("STRIPE_PAYOUT_DESCRIPTION_PREFIX")
            or defaults.payout_description_prefix,
            institution_name=manager.get_property("STRIPE_INSTITUTION_NAME") or defaults.institution_name,
            payout_category_label=manager.get_property("STRIPE_PAYOUT_CATEGORY_LABEL")
            or defaults.payout_category_label,
            fee_category_label=manager.get_property("STRIPE_FEE_CATEGORY_LABEL") or defaults.fee_category_label,
            summary_email=manager.get_property("SUMMARY_EMAIL"),
            receipts_folder_url=manager.get_property("RECEIPTS_FOLDER_URL"),
        )
