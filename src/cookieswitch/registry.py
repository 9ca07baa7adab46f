"""Profile registry loader with schema validation."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from pydantic import ValidationError

from .exceptions import ProfileValidationError, RegistryError
from .models import Account, AutoSwitchRule, ProfileSettings, SwitchSettings

PROFILE_DIR = Path(".cookieswitch") / "profile"

SETTINGS_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "cookieswitch settings",
    "type": "object",
    "required": ["version"],
    "properties": {
        "version": {"type": "string"},
        "settings": {"type": "object"},
    },
}

RULES_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "cookieswitch auto-switch rules",
    "type": "object",
    "required": ["rules"],
    "properties": {
        "rules": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["account", "urlPattern"],
                "properties": {
                    "account": {"type": "string"},
                    "urlPattern": {"type": "string"},
                },
            },
        },
    },
}

ACCOUNTS_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "cookieswitch accounts",
    "type": "object",
    "required": ["accounts"],
    "properties": {
        "accounts": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "cookies"],
                "properties": {
                    "name": {"type": "string"},
                    "cookies": {"type": "array"},
                    "avatarUrl": {"type": ["string", "null"]},
                },
            },
        },
    },
}

SCHEMAS: dict[str, dict[str, Any]] = {
    "settings": SETTINGS_SCHEMA,
    "rules": RULES_SCHEMA,
    "accounts": ACCOUNTS_SCHEMA,
}


class ProfileRegistry:
    """Loads, validates and saves the settings, rules and accounts of a profile."""

    def __init__(self, registry_root: Path) -> None:
        """Initialize registry with root path.

        Args:
            registry_root: Path to .cookieswitch/profile directory
        """
        self.root = Path(registry_root)
        self._schema_cache: dict[str, dict[str, Any]] = {}

    def _load_schema(self, schema_name: str) -> dict[str, Any]:
        """Load and cache JSON schema."""
        if schema_name not in self._schema_cache:
            schema_path = self.root / "schemas" / f"{schema_name}.schema.json"
            if not schema_path.exists():
                msg = f"Schema file not found: {schema_path}"
                raise RegistryError(msg)

            try:
                with schema_path.open(encoding="utf-8") as f:
                    self._schema_cache[schema_name] = json.load(f)
            except (json.JSONDecodeError, OSError) as e:
                msg = f"Failed to load schema {schema_name}: {e}"
                raise RegistryError(msg) from e

        return self._schema_cache[schema_name]

    def _validate_yaml_against_schema(
        self,
        data: Any,
        schema_name: str,
    ) -> None:
        """Validate YAML data against JSON schema."""
        schema = self._load_schema(schema_name)

        try:
            jsonschema.validate(data, schema)
        except jsonschema.ValidationError as e:
            msg = f"Schema validation failed: {e.message}"
            raise ProfileValidationError(
                msg,
                details={"path": list(e.absolute_path), "schema": schema_name},
            ) from e

    def _read_yaml(self, file_name: str) -> Any:
        path = self.root / file_name
        if not path.exists():
            msg = f"Profile file not found: {path}"
            raise RegistryError(msg)

        try:
            with path.open(encoding="utf-8") as f:
                return yaml.safe_load(f)
        except yaml.YAMLError as e:
            msg = f"Failed to parse {file_name}: {e}"
            raise RegistryError(msg) from e
        except OSError as e:
            msg = f"Failed to read {file_name}: {e}"
            raise RegistryError(msg) from e

    def _read_mapping(self, file_name: str, default: dict[str, Any]) -> dict[str, Any]:
        """Read a YAML file whose top level must be a mapping; empty gives default."""
        data = self._read_yaml(file_name)
        if data is None:
            return default
        if not isinstance(data, dict):
            msg = f"{file_name} must contain a mapping, got {type(data).__name__}"
            raise ProfileValidationError(msg, details={"file": file_name})
        return data

    def load_settings(self, validate: bool = True) -> SwitchSettings:
        """Load switch settings.

        A missing settings file yields the defaults.

        Raises:
            RegistryError: If the file exists but cannot be read
            ProfileValidationError: If validation fails
        """
        if not (self.root / "settings.yaml").exists():
            return SwitchSettings()

        data = self._read_mapping("settings.yaml", {})
        if data.get("settings") is None:
            data.pop("settings", None)
        if validate:
            self._validate_yaml_against_schema(data, "settings")

        try:
            return ProfileSettings.model_validate(data).settings
        except ValidationError as e:
            msg = f"Settings validation failed: {e}"
            raise ProfileValidationError(msg) from e

    def load_rules(self, validate: bool = True) -> list[AutoSwitchRule]:
        """Load the ordered auto-switch rules.

        An invalid rule is an error, not skipped, since rule order decides
        which account wins.

        Raises:
            RegistryError: If rules.yaml cannot be loaded
            ProfileValidationError: If validation fails
        """
        data = self._read_mapping("rules.yaml", {"rules": []})
        if validate:
            self._validate_yaml_against_schema(data, "rules")

        rules = []
        for index, rule_dict in enumerate(data.get("rules") or []):
            try:
                rules.append(AutoSwitchRule.model_validate(rule_dict))
            except ValidationError as e:
                msg = f"Rule #{index + 1} is invalid: {e}"
                raise ProfileValidationError(msg, details={"index": index}) from e
        return rules

    def load_accounts(self, validate: bool = True) -> list[Account]:
        """Load stored account snapshots; no file means no accounts yet."""
        if not (self.root / "accounts.yaml").exists():
            return []

        data = self._read_mapping("accounts.yaml", {"accounts": []})
        if validate:
            self._validate_yaml_against_schema(data, "accounts")

        try:
            return [Account.model_validate(a) for a in data.get("accounts") or []]
        except ValidationError as e:
            msg = f"Accounts validation failed: {e}"
            raise ProfileValidationError(msg) from e

    def save_accounts(self, accounts: list[Account]) -> None:
        """Write the account table back to accounts.yaml."""
        data = {
            "accounts": [
                a.model_dump(mode="json", by_alias=True, exclude_none=True)
                for a in accounts
            ],
        }
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            with (self.root / "accounts.yaml").open("w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, sort_keys=False)
        except OSError as e:
            msg = f"Failed to write accounts: {e}"
            raise RegistryError(msg) from e

    def write_schemas(self) -> None:
        """Write the bundled JSON schemas into the registry."""
        schemas_dir = self.root / "schemas"
        schemas_dir.mkdir(parents=True, exist_ok=True)
        for name, schema in SCHEMAS.items():
            (schemas_dir / f"{name}.schema.json").write_text(
                json.dumps(schema, indent=2) + "\n",
                encoding="utf-8",
            )


def discover_registry(start: Path | None = None) -> Path | None:
    """Discover a profile registry in the directory hierarchy.

    Returns:
        Path to discovered registry or None if not found
    """
    current = (start or Path.cwd()).resolve()

    while True:
        registry_path = current / PROFILE_DIR
        if registry_path.is_dir():
            return registry_path
        if current == current.parent:
            return None
        current = current.parent
