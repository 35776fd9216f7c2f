"""Bundled rule packs.

Rule packs are YAML files in ``rules/packs/`` holding rules in the same
document format the admin panel submits. Installing a pack validates
every rule and creates (or refreshes) it in the organization's rule set.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from .dsl import validate_rule_document
from .errors import NotFoundError, RuleValidationError
from .models import Rule
from .store import RuleStore

logger = logging.getLogger(__name__)

PACKS_DIR = Path(__file__).parent / "packs"


def list_packs() -> list[dict[str, Any]]:
    """List available rule packs.

    Returns:
        Pack metadata (id, name, description, rule_count), sorted by name.
    """
    packs = []
    for file_path in PACKS_DIR.glob("*.yaml"):
        data = _read_pack_file(file_path)
        packs.append(
            {
                "id": file_path.stem,
                "name": data.get("name", file_path.stem),
                "description": (data.get("description") or "").strip(),
                "rule_count": len(data.get("rules") or []),
            }
        )
    return sorted(packs, key=lambda x: x["name"])


def _read_pack_file(file_path: Path) -> dict[str, Any]:
    with open(file_path) as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise RuleValidationError("rule pack must be a mapping", file_path.name)
    return data


def load_pack(pack_id: str) -> list[dict[str, Any]]:
    """Load and validate the rule documents of one pack.

    Raises:
        NotFoundError: If the pack doesn't exist
        RuleValidationError: If any rule in the pack is invalid
    """
    if ".." in pack_id or "/" in pack_id or "\\" in pack_id:
        raise NotFoundError("rule pack", pack_id)

    file_path = PACKS_DIR / f"{pack_id}.yaml"
    if not file_path.exists():
        raise NotFoundError("rule pack", pack_id)

    documents = _read_pack_file(file_path).get("rules") or []
    for index, document in enumerate(documents):
        try:
            validate_rule_document(document)
        except RuleValidationError as e:
            raise RuleValidationError(e.message, f"rules[{index}].{e.path}") from None
    return documents


def install_pack(store: RuleStore, org_id: str, pack_id: str) -> list[Rule]:
    """Install a rule pack into an organization.

    Rules are matched by name: existing rules are refreshed from the pack,
    new ones are created. Archived rules with the same name are left alone.
    """
    installed = []
    for document in load_pack(pack_id):
        existing = store.find_by_name(org_id, document["name"])
        if existing is None:
            installed.append(store.create_rule(org_id, document))
        elif existing.archived_at is None:
            patch = {key: value for key, value in document.items() if key != "id"}
            installed.append(store.update_rule(existing.id, patch, org_id))
        else:
            logger.info(f"Skipping archived rule {existing.name} from pack {pack_id}")

    logger.info(f"Installed {len(installed)} rules from pack {pack_id} for org {org_id}")
    return installed
