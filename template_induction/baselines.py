import logging
import numpy as np

from collections import defaultdict
from template_induction.corpus import Entity
from template_induction.evaluation.matching import PRF1
from template_induction.evaluation.slot_alignment import SlotAlignmentEvaluator
from typing import Iterable, List, Sequence

LOG = logging.getLogger(__name__)


class MentionCountBaseline:
    def __init__(self, num_slots: int, per_slot: int = 1, random_seed: int = 42):
        """Fills slots with a document's most frequently mentioned entities

        The entity with the most mentions goes to slot 0, the next to slot
        1, and so on; entities with equally many mentions are taken in
        random order.

        Parameters
        ----------
        num_slots
            the number of slots to fill in every document
        per_slot
            the number of entities put into each slot
        random_seed
            seed for breaking ties
        """
        self.num_slots = num_slots
        self.per_slot = per_slot
        self.rng = np.random.default_rng(random_seed)

    def label_entities(self, doc_entities: Sequence[Entity]) -> None:
        for entity in doc_entities:
            entity.clear_labels()
        by_length = defaultdict(list)
        for entity in doc_entities:
            by_length[entity.num_mentions()].append(entity)

        slot, added = 0, 0
        for length in sorted(by_length, reverse=True):
            group = list(by_length[length])
            while group and slot < self.num_slots:
                chosen = group.pop(int(self.rng.integers(len(group))))
                chosen.add_label(slot)
                added += 1
                if added == self.per_slot:
                    slot, added = slot + 1, 0
            if slot == self.num_slots:
                break

    def label_documents(self, docs_entities: Iterable[Sequence[Entity]]) -> None:
        for doc_entities in docs_entities:
            self.label_entities(doc_entities)

    def evaluate(
        self, doc_names: Sequence[str], docs_entities: List[Sequence[Entity]], answer_key
    ) -> PRF1:
        """Labels the documents and scores slot i against gold slot i"""
        self.label_documents(docs_entities)
        evaluator = SlotAlignmentEvaluator(self.num_slots, answer_key)
        evaluator.set_guesses(doc_names, docs_entities)
        prf1 = evaluator.evaluate_mapping(list(range(self.num_slots)))
        LOG.info(
            f"Mention count baseline: p={prf1.precision:.3f} r={prf1.recall:.3f} f1={prf1.f1:.3f}"
        )
        return prf1
