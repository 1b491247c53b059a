"""
Per-kind defaults: instruction template, turn budget and default instruction.
"""
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

import yaml

from .interfaces import TaskKind

logger = logging.getLogger(__name__)

KINDS_FILE = Path(__file__).resolve().parent.parent / "config" / "task_kinds.yaml"


@dataclass(frozen=True)
class KindDefaults:
    template: str
    max_turns: int
    instruction: Optional[str] = None


@dataclass(frozen=True)
class KindTable:
    default: KindDefaults
    kinds: Dict[str, KindDefaults]

    def get(self, kind: str) -> KindDefaults:
        return self.kinds.get(kind, self.default)


def load_kind_table(path: Path = KINDS_FILE) -> KindTable:
    """Load the per-kind table from YAML."""
    with open(path, "r", encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid task kind table {path}: {e}")

    default_raw = raw.get("default") or {}
    default = KindDefaults(
        template=str(default_raw.get("template", "command")),
        max_turns=int(default_raw.get("max_turns", 20)),
    )
    kinds: Dict[str, KindDefaults] = {}
    for name, entry in (raw.get("kinds") or {}).items():
        entry = entry or {}
        kinds[str(name)] = KindDefaults(
            template=str(entry.get("template", default.template)),
            max_turns=int(entry.get("max_turns", default.max_turns)),
            instruction=(entry.get("instruction") or None),
        )
    logger.debug(f"Loaded {len(kinds)} task kinds from {path}")
    return KindTable(default=default, kinds=kinds)


@lru_cache(maxsize=1)
def kind_table() -> KindTable:
    return load_kind_table()


def turns_for_kind(kind: str) -> int:
    return kind_table().get(kind).max_turns


def template_for_kind(kind: str) -> str:
    return kind_table().get(kind).template


def default_instruction(kind: str) -> str:
    return kind_table().get(kind).instruction or f"Run the {kind} agent."


def resolve_instruction(kind: str, instruction_text: Optional[str]) -> str:
    """Effective instruction for a queued job.

    An explicit instruction wins, except for the assistant kind where it is
    appended after the kind's preamble.
    """
    explicit = (instruction_text or "").strip()
    if not explicit:
        return default_instruction(kind)
    if kind == TaskKind.ASSISTANT:
        return f"{default_instruction(kind)}\n\n{explicit}"
    return explicit
