"""
Business term dictionary

Immutable view over the business registry JSON: terms with their candidate
schema mappings, glossary entries, business domains, business rules and
few-shot examples. Built once and passed to the components that need it.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from loguru import logger

from bizsql.domain.ontology.models import (
    BusinessRule,
    DomainDefinition,
    EntityType,
    GlossaryEntry,
    QueryExample,
    RuleType,
    TermDefinition,
    TermMapping,
)

_WHITESPACE = re.compile(r"\s+")


def normalize_phrase(phrase: str) -> str:
    """Lower-case and collapse whitespace so lookups are spelling-insensitive to spacing."""
    return _WHITESPACE.sub(" ", phrase.strip().lower())


@dataclass(frozen=True)
class BusinessTermDictionary:
    """
    Read-only business vocabulary.

    Construct with ``from_dict`` or ``from_file``; tests build their own
    fixture instead of touching a shared instance.
    """

    terms: Mapping[str, TermDefinition]
    glossary: Mapping[str, GlossaryEntry]
    domains: Tuple[DomainDefinition, ...]
    business_rules: Tuple[BusinessRule, ...]
    examples: Tuple[QueryExample, ...]
    _index: Mapping[str, Tuple[TermDefinition, ...]]
    max_phrase_words: int = 3
    version: int = 1

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BusinessTermDictionary":
        terms: Dict[str, TermDefinition] = {}
        for name, raw in (data.get("terms") or {}).items():
            key = normalize_phrase(name)
            entity_type = EntityType(raw.get("type", "table"))
            mappings = tuple(
                TermMapping(
                    table=m["table"],
                    column=m.get("column"),
                    entity_type=EntityType(m.get("type", entity_type.value)),
                    literal_value=m.get("value"),
                    confidence=float(m.get("confidence", 1.0)),
                )
                for m in raw.get("mappings", [])
            )
            terms[key] = TermDefinition(
                name=key,
                concept=raw.get("concept", key),
                entity_type=entity_type,
                aliases=tuple(normalize_phrase(a) for a in raw.get("aliases", [])),
                mappings=mappings,
                description=raw.get("description"),
            )

        glossary = {
            normalize_phrase(term): GlossaryEntry(
                term=normalize_phrase(term),
                definition=raw.get("definition", ""),
                related_tables=tuple(raw.get("related_tables", [])),
                aliases=tuple(normalize_phrase(a) for a in raw.get("aliases", [])),
                confidence=float(raw.get("confidence", 0.8)),
            )
            for term, raw in (data.get("glossary") or {}).items()
        }

        domains = tuple(
            DomainDefinition(
                name=raw["name"],
                keywords=tuple(normalize_phrase(k) for k in raw.get("keywords", [])),
                priority=int(raw.get("priority", 100)),
                tables=tuple(raw.get("tables", [])),
                description=raw.get("description"),
            )
            for raw in data.get("domains", [])
        )

        rules = tuple(
            BusinessRule(
                name=raw["name"],
                rule_type=RuleType(raw["type"]),
                table=raw["table"],
                column=raw["column"],
                value=raw.get("value"),
                description=raw.get("description", ""),
            )
            for raw in data.get("business_rules", [])
        )

        examples = tuple(
            QueryExample(
                question=raw["question"],
                sql=raw["sql"],
                tables=tuple(raw.get("tables", [])),
                intent=raw.get("intent"),
            )
            for raw in data.get("examples", [])
        )

        index = cls._build_index(terms)
        longest = max((len(phrase.split()) for phrase in index), default=1)

        dictionary = cls(
            terms=MappingProxyType(terms),
            glossary=MappingProxyType(glossary),
            domains=domains,
            business_rules=rules,
            examples=examples,
            _index=MappingProxyType(index),
            max_phrase_words=min(max(longest, 1), 4),
            version=int(data.get("version", 1)),
        )
        logger.info(
            f"Loaded business registry v{dictionary.version}: {len(terms)} terms, "
            f"{len(glossary)} glossary entries, {len(domains)} domains, {len(rules)} rules"
        )
        return dictionary

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "BusinessTermDictionary":
        """Load the registry JSON from disk."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return cls.from_dict(data)

    @staticmethod
    def _build_index(terms: Dict[str, TermDefinition]) -> Dict[str, Tuple[TermDefinition, ...]]:
        # Exact names are indexed before aliases so they come first in each entry
        index: Dict[str, List[TermDefinition]] = {}
        for key, term in terms.items():
            index.setdefault(key, []).append(term)
        for term in terms.values():
            for alias in term.aliases:
                bucket = index.setdefault(alias, [])
                if term not in bucket:
                    bucket.append(term)
        return {phrase: tuple(defs) for phrase, defs in index.items()}

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def lookup_all(self, phrase: str) -> Tuple[TermDefinition, ...]:
        """All term definitions whose name or alias equals ``phrase``."""
        return self._index.get(normalize_phrase(phrase), ())

    def lookup(self, phrase: str) -> Optional[TermDefinition]:
        """Exact or alias match; exact term names win over aliases."""
        matches = self.lookup_all(phrase)
        return matches[0] if matches else None

    def is_exact_term(self, phrase: str) -> bool:
        return normalize_phrase(phrase) in self.terms

    def glossary_matches(self, text: str) -> List[GlossaryEntry]:
        """Glossary entries whose term or alias appears as whole words in ``text``."""
        normalized = f" {normalize_phrase(re.sub(r'[^A-Za-z0-9 ]+', ' ', text))} "
        matches = []
        for term, entry in sorted(self.glossary.items()):
            phrases = (term,) + entry.aliases
            if any(f" {p} " in normalized for p in phrases):
                matches.append(entry)
        return matches

    def rules_for_tables(self, tables) -> List[BusinessRule]:
        wanted = {t.lower() for t in tables}
        return [r for r in self.business_rules if r.table.lower() in wanted]
