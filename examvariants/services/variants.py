import math
import random
import uuid
import logging
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Tuple, Any

from examvariants.core.config import settings
from examvariants.core.errors import PreconditionError
from examvariants.models.domain import Exam, ExamQuestion, QuestionType, Variant, VariantConfig, variant_code_for

logger = logging.getLogger(__name__)

Signature = Tuple[Tuple[int, ...], Tuple[Tuple[int, ...], ...]]


@dataclass
class GenerationPlan:
    """Variants drawn for one generation, not yet persisted."""
    generation_id: str
    exam_id: str
    config: VariantConfig
    variants: List[Variant]
    statistics: Dict[str, Any] = field(default_factory=dict)


def _shuffles_options(question: ExamQuestion, config: VariantConfig) -> bool:
    if question.type == QuestionType.TRUE_FALSE:
        return config.randomize_true_false
    return config.randomize_option_order


def _signature(variant: Variant) -> Signature:
    return tuple(variant.question_order), tuple(tuple(o) for o in variant.option_orders)


def max_possible_variations(exam: Exam, config: VariantConfig, cap: Optional[int] = None) -> int:
    """Number of distinct variants the config can produce, saturating at ``cap``."""
    cap = cap or settings.MAX_POSSIBLE_VARIATIONS_CAP
    total = 1
    if config.randomize_question_order:
        total = min(cap, math.factorial(min(len(exam.questions), 20)))
    for q in exam.questions:
        if _shuffles_options(q, config):
            total = min(cap, total * math.factorial(min(len(q.effective_options()), 20)))
        if total >= cap:
            return cap
    return total


def validate_exam(exam: Exam) -> None:
    if not exam.questions:
        raise PreconditionError("no questions")
    for q in exam.questions:
        if q.type == QuestionType.MULTIPLE_CHOICE and not q.options:
            raise PreconditionError(f"Question {q.id} is multiple choice but has no options")
        if q.correct_option_index() is None:
            raise PreconditionError(
                f"Question {q.id}: correct answer {q.correct_answer!r} is not one of its options")


def validate_uniqueness(variants: List[Variant]) -> Dict[str, Any]:
    """Report identical variant pairs and the share of distinct variants."""
    seen: Dict[Signature, int] = {}
    duplicates = []
    for v in variants:
        sig = _signature(v)
        if sig in seen:
            duplicates.append({"first": seen[sig], "second": v.variant_number})
        else:
            seen[sig] = v.variant_number
    total = len(variants)
    return {
        "isUnique": not duplicates,
        "duplicates": duplicates,
        "uniquenessScore": (len(seen) / total) if total else 1.0,
    }


class VariantGenerator:
    """Draws shuffled variants of an exam."""

    def __init__(self, max_variants: Optional[int] = None, attempts: Optional[int] = None):
        self.max_variants = max_variants or settings.MAX_VARIANTS
        self.attempts = attempts or settings.UNIQUE_VARIANT_ATTEMPTS

    def generate(self, exam: Exam, config: VariantConfig, generation_id: Optional[str] = None) -> GenerationPlan:
        validate_exam(exam)
        n = config.number_of_variants
        if n < 1 or n > self.max_variants:
            raise PreconditionError(f"numberOfVariants must be between 1 and {self.max_variants}, got {n}")

        generation_id = generation_id or str(uuid.uuid4())
        possible = max_possible_variations(exam, config)
        enforce_unique = possible >= n

        variants: List[Variant] = []
        seen = set()
        for number in range(1, n + 1):
            rng = self._rng(config.seed, number)
            variant = self._draw(exam, config, rng, generation_id, number)
            if enforce_unique:
                tries = 0
                while _signature(variant) in seen and tries < self.attempts:
                    variant = self._draw(exam, config, rng, generation_id, number)
                    tries += 1
                if _signature(variant) in seen:
                    logger.warning("Variant %s duplicates an earlier variant after %d redraws",
                                   variant.variant_code, tries)
            seen.add(_signature(variant))
            variants.append(variant)

        stats = {
            "uniqueQuestionOrders": len({tuple(v.question_order) for v in variants}),
            "uniqueOptionCombinations": len({_signature(v)[1] for v in variants}),
            "estimatedTotalPossibleVariations": possible,
            "possibleVariationsCapped": possible >= settings.MAX_POSSIBLE_VARIATIONS_CAP,
        }
        logger.info("Generated %d variants for exam %s (generation %s)", n, exam.id, generation_id)
        return GenerationPlan(generation_id=generation_id, exam_id=exam.id, config=config,
                              variants=variants, statistics=stats)

    @staticmethod
    def _rng(seed: Optional[str], number: int) -> random.Random:
        if seed is None:
            return random.Random()
        return random.Random(f"{seed}_v{number}")

    def _draw(self, exam: Exam, config: VariantConfig, rng: random.Random,
              generation_id: str, number: int) -> Variant:
        question_order = list(range(len(exam.questions)))
        if config.randomize_question_order:
            rng.shuffle(question_order)
        option_orders = []
        for q in exam.questions:
            order = list(range(len(q.effective_options())))
            if _shuffles_options(q, config):
                rng.shuffle(order)
            option_orders.append(order)
        return Variant(
            id=str(uuid.uuid4()),
            generation_id=generation_id,
            variant_number=number,
            variant_code=variant_code_for(number),
            question_order=question_order,
            option_orders=option_orders,
        )
