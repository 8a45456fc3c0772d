"""
Business context analyzer.

Runs intent classification, entity linking, domain classification and time
resolution over one question and returns an immutable profile. Each step
checks the caller's cancellation token and the analysis time limit first.
"""

import time
from datetime import date
from typing import Callable, Optional

from loguru import logger

from bizsql.config.settings import settings
from bizsql.domain.context.domain_classifier import DomainClassifier
from bizsql.domain.context.intent import classify_intent, extract_top_n
from bizsql.domain.context.models import BusinessContextProfile
from bizsql.domain.ontology.linker import EntityLinker, tokenize
from bizsql.domain.ontology.registry import BusinessTermDictionary
from bizsql.domain.time_resolver import TimeExpressionResolver, strip_time_phrases
from bizsql.sql.catalog.snapshot import SchemaCatalog
from bizsql.utils.cancellation import CancellationToken
from bizsql.utils.errors import AnalysisError


class BusinessContextAnalyzer:
    """
    Question -> BusinessContextProfile.

    All collaborators are injected; the dictionary and catalog are read-only
    snapshots shared across requests.
    """

    def __init__(
        self,
        dictionary: BusinessTermDictionary,
        catalog: SchemaCatalog,
        linker: Optional[EntityLinker] = None,
        time_resolver: Optional[TimeExpressionResolver] = None,
        domain_classifier: Optional[DomainClassifier] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.dictionary = dictionary
        self.catalog = catalog
        self.linker = linker or EntityLinker(dictionary)
        self.time_resolver = time_resolver or TimeExpressionResolver()
        self.domain_classifier = domain_classifier or DomainClassifier(dictionary.domains)
        self._clock = clock

    def analyze(
        self,
        question: str,
        user_id: str,
        token: Optional[CancellationToken] = None,
        now: Optional[date] = None,
    ) -> BusinessContextProfile:
        """
        Build the business context profile for a question.

        Raises:
            AnalysisError: empty question, question above the length limit,
                or analysis running past its time limit
            PipelineCancelled: the token fired between steps
        """
        if question is None or not question.strip():
            raise AnalysisError("Question is empty", stage="analysis")
        question = question.strip()
        if len(question) > settings.max_question_length:
            raise AnalysisError(
                f"Question is {len(question)} characters; the limit is {settings.max_question_length}",
                stage="analysis",
            )

        started = self._clock()

        def checkpoint(step: str) -> None:
            if token is not None:
                token.raise_if_cancelled(f"analysis.{step}")
            elapsed = self._clock() - started
            if elapsed > settings.analysis_timeout_seconds:
                raise AnalysisError(
                    f"Analysis exceeded {settings.analysis_timeout_seconds}s before {step}",
                    stage="analysis",
                )

        checkpoint("intent")
        intent = classify_intent(question)

        checkpoint("entities")
        tokens = tokenize(question)
        entities = tuple(self.linker.link(strip_time_phrases(tokens), self.catalog))

        checkpoint("domain")
        domain = self.domain_classifier.classify(" ".join(tokens), entities)

        checkpoint("time")
        time_resolution = self.time_resolver.resolve(question, now=now)

        overall = self._overall_confidence(intent.confidence, domain.confidence, entities)

        profile = BusinessContextProfile(
            raw_question=question,
            user_id=user_id,
            intent=intent.intent,
            intent_confidence=intent.confidence,
            domain=domain,
            entities=entities,
            time_context=time_resolution.context,
            time_ambiguous=time_resolution.ambiguous,
            ambiguous_time_phrase=time_resolution.ambiguous_phrase,
            overall_confidence=overall,
            top_n=extract_top_n(question),
        )
        logger.info(
            f"Analyzed question for user={user_id}: intent={profile.intent.value} "
            f"domain={domain.name} ({domain.confidence:.2f}) entities={len(entities)} "
            f"time={'ambiguous' if profile.time_ambiguous else profile.time_context} "
            f"confidence={overall:.2f}"
        )
        return profile

    @staticmethod
    def _overall_confidence(intent_confidence: float, domain_confidence: float, entities) -> float:
        """Weighted average; the entity weight is redistributed when no entity was found."""
        parts = [
            (settings.intent_confidence_weight, intent_confidence),
            (settings.domain_confidence_weight, domain_confidence),
        ]
        if entities:
            mean_entity = sum(e.confidence for e in entities) / len(entities)
            parts.append((settings.entity_confidence_weight, mean_entity))
        total_weight = sum(w for w, _ in parts)
        if total_weight <= 0:
            return 0.0
        return sum(w * c for w, c in parts) / total_weight
