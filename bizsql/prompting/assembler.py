"""
Context assembler.

Renders the generation prompt in a fixed section order:

    instructions, business context, schema, relationships,
    business rules, glossary terms, examples

Instructions, business context, schema and relationships are mandatory.
When the budget is tight, optional content is removed item by item:
examples first (lowest ranked first), then glossary terms, then rules.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from loguru import logger

from bizsql.config.settings import settings
from bizsql.domain.context.models import BusinessContextProfile
from bizsql.domain.ontology.models import BusinessRule, GlossaryEntry, QueryExample, RuleType
from bizsql.domain.ontology.registry import BusinessTermDictionary
from bizsql.prompting.templates import GENERATION_INSTRUCTIONS, section
from bizsql.retrieval.models import SchemaSelection
from bizsql.retrieval.tokens import TokenBudget, estimate_tokens
from bizsql.utils.errors import TokenBudgetExceeded

SECTION_INSTRUCTIONS = "instructions"
SECTION_BUSINESS_CONTEXT = "business_context"
SECTION_SCHEMA = "schema"
SECTION_RELATIONSHIPS = "relationships"
SECTION_RULES = "business_rules"
SECTION_GLOSSARY = "glossary"
SECTION_EXAMPLES = "examples"
SECTION_HEADERS = "section_headers"

SCHEMA_TITLE = "SCHEMA"
RELATIONSHIPS_TITLE = "RELATIONSHIPS"


@dataclass(frozen=True)
class PromptSection:
    name: str
    content: str
    tokens: int


@dataclass(frozen=True)
class PromptContext:
    """Rendered prompt plus its true token count."""
    sections: Tuple[PromptSection, ...]
    token_count: int
    trimmed: Tuple[str, ...] = field(default=())  # Descriptions of removed optional items

    def render(self) -> str:
        return "\n\n".join(s.content for s in self.sections if s.content)

    def section(self, name: str) -> Optional[PromptSection]:
        return next((s for s in self.sections if s.name == name), None)


def _render_rule(rule: BusinessRule) -> str:
    if rule.rule_type == RuleType.REQUIRED_FILTER:
        text = f"- Always filter {rule.table}.{rule.column} = {rule.value!r}"
    else:
        text = f"- Never select or filter {rule.table}.{rule.column}"
    return f"{text} ({rule.description})" if rule.description else text


def _render_glossary(entry: GlossaryEntry) -> str:
    return f"- {entry.term}: {entry.definition}"


def _render_example(example: QueryExample) -> str:
    return f"Q: {example.question}\nSQL: {example.sql}"


class ContextAssembler:
    """Deterministic prompt assembly under a token budget."""

    def __init__(self, dictionary: BusinessTermDictionary, dialect: Optional[str] = None,
                 max_examples: Optional[int] = None):
        self.dictionary = dictionary
        self.dialect = dialect or settings.sql_dialect
        self.max_examples = settings.max_examples_in_prompt if max_examples is None else max_examples

    # ------------------------------------------------------------------
    # Fixed part
    # ------------------------------------------------------------------

    def render_instructions(self) -> str:
        return GENERATION_INSTRUCTIONS.format(dialect=self.dialect)

    def render_business_context(self, profile: BusinessContextProfile) -> str:
        lines = [
            f"Question: {profile.raw_question}",
            f"Intent: {profile.intent.value}",
            f"Domain: {profile.domain.name}",
        ]
        entities = [e for e in profile.entities if e.is_mapped]
        if entities:
            lines.append("Entities:")
            for entity in entities:
                target = entity.mapped_table + (f".{entity.mapped_column}" if entity.mapped_column else "")
                value = f" = '{entity.literal_value}'" if entity.literal_value is not None else ""
                lines.append(f"- {entity.name} ({entity.entity_type.value}) -> {target}{value}")
        if profile.time_context is not None:
            tc = profile.time_context
            lines.append(
                f"Date range: {tc.start_date.isoformat()} to {tc.end_date.isoformat()} inclusive "
                f"({tc.relative_expression})"
            )
        elif profile.time_ambiguous:
            lines.append(
                f"Date range: not specified ('{profile.ambiguous_time_phrase}' is ambiguous); "
                f"do not filter by date"
            )
        if profile.top_n:
            lines.append(f"Limit: top {profile.top_n}")
        return section("BUSINESS CONTEXT", "\n".join(lines))

    @staticmethod
    def _header_tokens() -> int:
        return estimate_tokens(section(SCHEMA_TITLE, "")) + estimate_tokens(section(RELATIONSHIPS_TITLE, ""))

    def base_prompt_tokens(self, profile: BusinessContextProfile) -> int:
        """Tokens of everything that does not depend on retrieval."""
        return (
            estimate_tokens(self.render_instructions())
            + estimate_tokens(self.render_business_context(profile))
            + self._header_tokens()
        )

    def reserve_base(self, profile: BusinessContextProfile, budget: TokenBudget) -> None:
        """Charge the fixed part to ``budget`` once, before retrieval sizes the schema."""
        if SECTION_BUSINESS_CONTEXT in budget.ledger:
            return
        base = self.base_prompt_tokens(profile)
        if not budget.fits(base):
            raise TokenBudgetExceeded(
                f"The fixed prompt part needs {base} tokens but only {budget.remaining} of "
                f"{budget.max_total_tokens} remain",
                stage="budget",
            )
        budget.consume(estimate_tokens(self.render_instructions()), SECTION_INSTRUCTIONS)
        budget.consume(estimate_tokens(self.render_business_context(profile)), SECTION_BUSINESS_CONTEXT)
        budget.consume(self._header_tokens(), SECTION_HEADERS)

    # ------------------------------------------------------------------
    # Optional content selection
    # ------------------------------------------------------------------

    def select_rules(self, rules: Iterable[BusinessRule], selection: SchemaSelection) -> List[BusinessRule]:
        return [r for r in rules if selection.has_table(r.table)]

    def select_glossary(self, profile: BusinessContextProfile, selection: SchemaSelection) -> List[GlossaryEntry]:
        matched = {e.term: e for e in self.dictionary.glossary_matches(profile.raw_question)}
        question_terms = set(matched)
        for term, entry in sorted(self.dictionary.glossary.items()):
            if term not in matched and any(selection.has_table(t) for t in entry.related_tables):
                matched[term] = entry
        # Question matches first, then alphabetical
        return sorted(matched.values(), key=lambda e: (e.term not in question_terms, e.term))

    def rank_examples(
        self,
        profile: BusinessContextProfile,
        selection: SchemaSelection,
        examples: Sequence[QueryExample],
    ) -> List[QueryExample]:
        selected = {t.lower() for t in selection.table_names}
        scored = []
        for example in examples:
            overlap = len({t.lower() for t in example.tables} & selected)
            intent_match = 1 if example.intent == profile.intent.value else 0
            score = 2 * overlap + intent_match
            if score > 0:
                scored.append((score, example))
        scored.sort(key=lambda item: (-item[0], item[1].question))
        return [example for _, example in scored[:self.max_examples]]

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def assemble(
        self,
        profile: BusinessContextProfile,
        selection: SchemaSelection,
        business_rules: Sequence[BusinessRule],
        examples: Sequence[QueryExample],
        budget: Optional[TokenBudget] = None,
    ) -> PromptContext:
        """
        Build the prompt context; with a budget, trim optional content to fit.

        Raises:
            TokenBudgetExceeded: the mandatory sections alone do not fit
        """
        instructions = self.render_instructions()
        business_context = self.render_business_context(profile)
        schema_body = selection.render_schema()
        relationships_body = selection.render_relationships()
        schema = section(SCHEMA_TITLE, schema_body)
        relationships = section(RELATIONSHIPS_TITLE, relationships_body)
        # Headers are charged with the fixed part; bodies match selection.estimated_tokens
        schema_tokens = estimate_tokens(section(SCHEMA_TITLE, "")) + estimate_tokens(schema_body)
        relationships_tokens = estimate_tokens(section(RELATIONSHIPS_TITLE, "")) + estimate_tokens(relationships_body)

        rules = [_render_rule(r) for r in self.select_rules(business_rules, selection)]
        glossary = [_render_glossary(e) for e in self.select_glossary(profile, selection)]
        shots = [_render_example(e) for e in self.rank_examples(profile, selection, examples)]

        trimmed: List[str] = []
        if budget is not None:
            self.reserve_base(profile, budget)
            budget.consume(estimate_tokens(schema_body), SECTION_SCHEMA)
            budget.consume(estimate_tokens(relationships_body), SECTION_RELATIONSHIPS)

            def optional_tokens() -> int:
                return sum(
                    estimate_tokens(self._render_optional(title, items))
                    for title, items in (("BUSINESS RULES", rules), ("GLOSSARY", glossary), ("EXAMPLES", shots))
                )

            # Lowest priority goes first
            for name, items in ((SECTION_EXAMPLES, shots), (SECTION_GLOSSARY, glossary), (SECTION_RULES, rules)):
                while items and optional_tokens() > budget.remaining:
                    items.pop()
                    trimmed.append(name)

        sections = [
            PromptSection(SECTION_INSTRUCTIONS, instructions, estimate_tokens(instructions)),
            PromptSection(SECTION_BUSINESS_CONTEXT, business_context, estimate_tokens(business_context)),
            PromptSection(SECTION_SCHEMA, schema, schema_tokens),
            PromptSection(SECTION_RELATIONSHIPS, relationships, relationships_tokens),
        ]
        for name, title, items in (
            (SECTION_RULES, "BUSINESS RULES", rules),
            (SECTION_GLOSSARY, "GLOSSARY", glossary),
            (SECTION_EXAMPLES, "EXAMPLES", shots),
        ):
            content = self._render_optional(title, items)
            if content:
                tokens = estimate_tokens(content)
                if budget is not None:
                    budget.consume(tokens, name)
                sections.append(PromptSection(name, content, tokens))

        context = PromptContext(
            sections=tuple(sections),
            token_count=sum(s.tokens for s in sections),
            trimmed=tuple(trimmed),
        )
        if trimmed:
            logger.info(f"Trimmed optional prompt items to fit budget: {trimmed}")
        logger.debug(f"Assembled prompt: {context.token_count} tokens across {len(sections)} sections")
        return context

    @staticmethod
    def _render_optional(title: str, items: List[str]) -> str:
        if not items:
            return ""
        separator = "\n\n" if title == "EXAMPLES" else "\n"
        return section(title, separator.join(items))
