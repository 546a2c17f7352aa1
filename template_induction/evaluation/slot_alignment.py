import logging
import math

from itertools import combinations, permutations
from template_induction.answer_key import (
    AnswerKey,
    get_all_gold_slots,
    remove_optionals,
    templates_containing,
)
from template_induction.constants import *
from template_induction.corpus import Entity
from template_induction.evaluation.matching import PRF1, evaluate_entities, score
from template_induction.exceptions import ConfigurationError
from typing import Dict, List, Optional, Sequence, Tuple

LOG = logging.getLogger(__name__)

# A mapping from learned role (index) to gold slot (value, -1 if unmapped)
Mapping = List[int]

STRATEGIES = ["greedy", "templates_greedy", "single_role", "schema", "exhaustive"]


class SlotAlignmentEvaluator:
    def __init__(
        self,
        num_learned_roles: int,
        answer_key: AnswerKey,
        evaluate_template_docs_only: bool = False,
        max_permutations: int = MAX_PERMUTATIONS,
    ):
        """Aligns learned roles to gold template slots and scores the result

        Parameters
        ----------
        num_learned_roles
            the number of learned roles (topics)
        answer_key
            the gold templates for each story
        evaluate_template_docs_only
            if True, documents without gold templates are ignored instead
            of being a source of false positives
        max_permutations
            the most mappings the exhaustive search may enumerate
        """
        self.num_learned_roles = num_learned_roles
        self.answer_key = answer_key
        self.evaluate_template_docs_only = evaluate_template_docs_only
        self.max_permutations = max_permutations
        self.doc_names: List[str] = []
        self.doc_entities: List[Optional[List[Entity]]] = []

        # Per-slot [correct, false positives, false negatives] of the last
        # full-mapping evaluation
        self.last_slot_counts: List[List[int]] = []
        self.unscored_false_positives = 0
        self.best_mapping: Optional[Mapping] = None

    @property
    def num_slots(self) -> int:
        return self.answer_key.num_slots()

    def set_guesses(
        self, doc_names: Sequence[str], doc_entities: Sequence[Optional[Sequence[Entity]]]
    ) -> None:
        """Sets the role-labeled entities of each document

        A document's entities may be None when the model produced no output
        for it.
        """
        if len(doc_names) != len(doc_entities):
            raise ConfigurationError(
                f"Got {len(doc_names)} document names for {len(doc_entities)} documents"
            )
        self.doc_names = list(doc_names)
        self.doc_entities = [None if ents is None else list(ents) for ents in doc_entities]

    def _documents(self, template_type: Optional[str] = None):
        """Yields (name, entities, gold slots or None) for every evaluated document"""
        for name, entities in zip(self.doc_names, self.doc_entities):
            templates = self.answer_key.get_templates(name)
            if template_type is not None:
                templates = templates_containing(template_type, templates)
            if templates is None and self.evaluate_template_docs_only:
                continue
            golds = None
            if templates is not None:
                golds = get_all_gold_slots(templates, self.num_slots)
            yield name, entities, golds

    @staticmethod
    def _count_labeled(entities: Sequence[Entity], role: int) -> int:
        return sum(1 for entity in entities if entity.has_label(role))

    @staticmethod
    def _guessed_strings(entities: Sequence[Entity], roles: Sequence[int]) -> List[str]:
        guesses = []
        for role in roles:
            for entity in entities:
                if entity.has_label(role):
                    guesses.append(entity.core_token_raw)
        return guesses

    def _check_mapping(self, perm: Mapping) -> None:
        if len(perm) != self.num_learned_roles:
            raise ConfigurationError(
                f"Mapping covers {len(perm)} roles, expected {self.num_learned_roles}"
            )
        for slot in perm:
            if not -1 <= slot < self.num_slots:
                raise ConfigurationError(f"Mapping refers to unknown slot {slot}")

    def evaluate_mapping(self, perm: Mapping) -> PRF1:
        """Scores a full role-to-slot mapping over every document

        Slots without any gold entities are left out of the aggregate;
        false positives in them are only recorded in
        unscored_false_positives.

        Parameters
        ----------
        perm
            the gold slot of each learned role, or -1 if it is unmapped
        """
        self._check_mapping(perm)
        slot_counts = [[0, 0, 0] for _ in range(self.num_slots)]
        roles_by_slot: Dict[int, List[int]] = {}
        for role, slot in enumerate(perm):
            if slot > -1:
                roles_by_slot.setdefault(slot, []).append(role)

        for name, entities, gold_slots in self._documents():
            if gold_slots is None:
                if entities is None:
                    continue
                # Every labeled entity is a false positive
                for role, slot in enumerate(perm):
                    if slot > -1:
                        slot_counts[slot][1] += self._count_labeled(entities, role)
            elif entities is None:
                for slot, golds in enumerate(gold_slots):
                    slot_counts[slot][2] += len(remove_optionals(golds))
            else:
                for slot, golds in enumerate(gold_slots):
                    if slot not in roles_by_slot:
                        slot_counts[slot][2] += len(remove_optionals(golds))
                        continue
                    guesses = self._guessed_strings(entities, roles_by_slot[slot])
                    result = evaluate_entities(golds, guesses)
                    slot_counts[slot][0] += result.correct
                    slot_counts[slot][1] += result.incorrect
                    slot_counts[slot][2] += result.missed

        total = [0, 0, 0]
        unscored = 0
        for slot, counts in enumerate(slot_counts):
            if counts[0] + counts[2] > 0:
                total = [t + c for t, c in zip(total, counts)]
            else:
                unscored += counts[1]
            LOG.debug(f"slot {slot} [correct, false-pos, false-neg] = {counts}")
        self.last_slot_counts = slot_counts
        self.unscored_false_positives = unscored

        prf1 = score(*total)
        LOG.debug(f"Mapping {perm}: p={prf1.precision:.3f} r={prf1.recall:.3f} f1={prf1.f1:.3f}")
        return prf1

    def evaluate_slot(self, slot: int, role: int, template_type: Optional[str] = None) -> PRF1:
        """Scores a single role against a single gold slot

        Parameters
        ----------
        slot
            the gold slot index
        role
            the learned role
        template_type
            if given, only gold templates of this incident type are used
        """
        counts = [0, 0, 0]
        for name, entities, gold_slots in self._documents(template_type):
            if gold_slots is None:
                if entities is not None:
                    counts[1] += self._count_labeled(entities, role)
            elif entities is None:
                counts[2] += len(remove_optionals(gold_slots[slot]))
            else:
                guesses = self._guessed_strings(entities, [role])
                result = evaluate_entities(gold_slots[slot], guesses)
                counts[0] += result.correct
                counts[1] += result.incorrect
                counts[2] += result.missed
        prf1 = score(*counts)
        LOG.debug(f"slot {slot} role {role} {counts}: f1={prf1.f1:.3f}")
        return prf1

    def _sorted_pairs(
        self, roles: Sequence[int], template_type: Optional[str] = None
    ) -> List[Tuple[float, int, int]]:
        """(f1, slot, role) for every pair worth considering, best first"""
        pairs = []
        for slot in range(self.num_slots):
            for role in roles:
                f1 = self.evaluate_slot(slot, role, template_type).f1
                if not math.isnan(f1) and f1 > MIN_PAIR_F1:
                    pairs.append((f1, slot, role))
        pairs.sort(key=lambda p: (-p[0], p[1], p[2]))
        return pairs

    def _greedy(self, pairs, allowed) -> Mapping:
        # Adds each pair in turn, keeping it only if the overall F1 does not drop
        perm = [-1] * self.num_learned_roles
        current: Optional[float] = None
        for f1, slot, role in pairs:
            if not allowed(perm, slot, role):
                LOG.debug(f"Skipping pair slot={slot} role={role}")
                continue
            old_slot = perm[role]
            perm[role] = slot
            new = self.evaluate_mapping(perm).f1
            if old_slot == -1:
                if math.isnan(new) or (current is not None and new <= current):
                    perm[role] = -1
                else:
                    current = new
            elif current is not None and new < current:
                perm[role] = old_slot
            else:
                current = new
        LOG.info(f"Greedy mapping {perm} at f1={current}")
        return perm

    def greedy_multiple_slots(self, max_roles_per_slot: Optional[int] = None) -> Mapping:
        """Greedy role-to-slot mapping allowing up to max_roles_per_slot
        roles per slot (unbounded if None)
        """
        pairs = self._sorted_pairs(range(self.num_learned_roles))

        def allowed(perm, slot, role):
            return max_roles_per_slot is None or perm.count(slot) < max_roles_per_slot

        return self._greedy(pairs, allowed)

    def greedy_multiple_templates(self, num_templates: int, max_templates_to_map: int) -> Mapping:
        """Greedy mapping in which at most max_templates_to_map learned
        templates contribute roles and each template fills a slot at most once
        """
        if num_templates <= 0 or self.num_learned_roles % num_templates != 0:
            raise ConfigurationError(
                f"{self.num_learned_roles} roles cannot be split into {num_templates} templates"
            )
        per_template = self.num_learned_roles // num_templates
        pairs = self._sorted_pairs(range(self.num_learned_roles))

        def siblings(role):
            start = (role // per_template) * per_template
            return range(start, start + per_template)

        def allowed(perm, slot, role):
            in_use = any(perm[r] > -1 for r in siblings(role))
            maps_to_slot = any(perm[r] == slot for r in siblings(role))
            templates_in_use = sum(
                1
                for t in range(num_templates)
                if any(perm[r] > -1 for r in range(t * per_template, (t + 1) * per_template))
            )
            return (in_use or templates_in_use < max_templates_to_map) and not maps_to_slot

        return self._greedy(pairs, allowed)

    def single_role_mapping(self) -> Mapping:
        """The best single role for each slot of each incident type"""
        best: Dict[Tuple[str, int], Tuple[int, PRF1]] = {}
        incident_types = self.answer_key.incident_types()
        for role in range(self.num_learned_roles):
            for incident_type in incident_types:
                for slot in range(self.num_slots):
                    prf1 = self.evaluate_slot(slot, role, incident_type)
                    current = best.get((incident_type, slot))
                    if current is None or math.isnan(current[1].f1) or current[1].f1 < prf1.f1:
                        best[(incident_type, slot)] = (role, prf1)

        perm = [-1] * self.num_learned_roles
        for (incident_type, slot), (role, prf1) in sorted(best.items()):
            LOG.info(f"{incident_type} slot {slot} -> role {role} f1={prf1.f1:.3f}")
            if prf1.f1 > MIN_SINGLE_ROLE_F1:
                perm[role] = slot
        return perm

    def best_learned_schema_for_template_type(
        self, num_templates: int, incident_type: str
    ) -> List[int]:
        """The roles of the learned template that best fills one incident
        type's slots

        Returns
        -------
        the role chosen for each slot, or -1
        """
        per_template = self.num_learned_roles // num_templates
        best_score = -1.0
        best_roles = [-1] * self.num_slots
        for template in range(num_templates):
            roles = range(template * per_template, (template + 1) * per_template)
            slot_to_role: Dict[int, Tuple[int, float]] = {}
            mapped_roles = set()
            for f1, slot, role in self._sorted_pairs(roles, incident_type):
                if role in mapped_roles:
                    continue
                if slot not in slot_to_role or slot_to_role[slot][1] < f1:
                    slot_to_role[slot] = (role, f1)
                    mapped_roles.add(role)

            template_score = sum(f1 for _, f1 in slot_to_role.values() if f1 > 0.0)
            LOG.debug(f"{incident_type} template {template} score {template_score:.3f}")
            if template_score > best_score:
                best_score = template_score
                best_roles = [
                    slot_to_role[slot][0] if slot in slot_to_role else -1
                    for slot in range(self.num_slots)
                ]
        LOG.info(f"Best roles for {incident_type}: {best_roles}")
        return best_roles

    def trim_mapping(self, perm: Mapping) -> Mapping:
        """Removes each mapping that does not measurably help the overall F1"""
        revised = list(perm)
        best = self.evaluate_mapping(revised).f1
        for role, slot in enumerate(perm):
            if slot > -1:
                revised[role] = -1
                f1 = self.evaluate_mapping(revised).f1
                if math.isnan(f1) or f1 < best - TRIM_TOLERANCE:
                    revised[role] = slot
        LOG.info(f"Trimmed mapping {perm} to {revised}")
        return revised

    def template_mapping(self, num_templates: int) -> Mapping:
        """Merges the best learned template of every incident type, then trims"""
        if num_templates <= 0 or self.num_learned_roles % num_templates != 0:
            raise ConfigurationError(
                f"{self.num_learned_roles} roles cannot be split into {num_templates} templates"
            )
        perm = [-1] * self.num_learned_roles
        for incident_type in self.answer_key.incident_types():
            roles = self.best_learned_schema_for_template_type(num_templates, incident_type)
            for slot in range(self.num_slots):
                if roles[slot] > -1:
                    perm[roles[slot]] = slot
        return self.trim_mapping(perm)

    def exhaustive_mapping(self, num_filled: Optional[int] = None) -> Mapping:
        """The best mapping of exactly num_filled roles to distinct slots

        Raises ConfigurationError before searching if the number of
        candidate mappings exceeds max_permutations.
        """
        if num_filled is None:
            num_filled = self.num_slots
        if not 0 < num_filled <= min(self.num_slots, self.num_learned_roles):
            raise ConfigurationError(
                f"Cannot fill {num_filled} slots with {self.num_learned_roles} roles "
                f"and {self.num_slots} slots"
            )
        n_mappings = math.comb(self.num_learned_roles, num_filled) * math.perm(
            self.num_slots, num_filled
        )
        if n_mappings > self.max_permutations:
            raise ConfigurationError(
                f"Exhaustive search over {n_mappings} mappings exceeds the limit of "
                f"{self.max_permutations}"
            )
        LOG.info(f"Searching {n_mappings} mappings")

        best_f1 = -1.0
        best_perm = [-1] * self.num_learned_roles
        for roles in combinations(range(self.num_learned_roles), num_filled):
            for slots in permutations(range(self.num_slots), num_filled):
                perm = [-1] * self.num_learned_roles
                for role, slot in zip(roles, slots):
                    perm[role] = slot
                f1 = self.evaluate_mapping(perm).f1
                if f1 > best_f1:
                    best_f1 = f1
                    best_perm = perm
        return best_perm

    def _final(self, perm: Mapping) -> PRF1:
        self.best_mapping = perm
        prf1 = self.evaluate_mapping(perm)
        LOG.info(
            f"Best mapping {perm}: p={prf1.precision:.3f} r={prf1.recall:.3f} f1={prf1.f1:.3f}"
        )
        return prf1

    def evaluate_slots_greedy(self, max_roles_per_slot: Optional[int] = None) -> PRF1:
        return self._final(self.greedy_multiple_slots(max_roles_per_slot))

    def evaluate_slots_as_templates_greedy(
        self, max_templates_to_map: int, num_templates: int
    ) -> PRF1:
        return self._final(self.greedy_multiple_templates(num_templates, max_templates_to_map))

    def best_single_role_each_slot(self) -> PRF1:
        return self._final(self.single_role_mapping())

    def best_schema_for_each_template_type(self, num_templates: int) -> PRF1:
        return self._final(self.template_mapping(num_templates))

    def evaluate_slots_ignoring_event_types(self, num_filled: Optional[int] = None) -> PRF1:
        return self._final(self.exhaustive_mapping(num_filled))

    def evaluate(
        self,
        strategy: str = "greedy",
        max_roles_per_slot: Optional[int] = None,
        num_templates: int = 0,
        max_templates_to_map: int = 1,
        num_filled: Optional[int] = None,
    ) -> PRF1:
        """Aligns roles to slots with the named strategy and scores the result

        Parameters
        ----------
        strategy
            one of "greedy", "templates_greedy", "single_role", "schema"
            or "exhaustive"
        max_roles_per_slot
            the greedy cap on roles per slot
        num_templates
            the number of learned templates (template strategies only)
        max_templates_to_map
            the number of templates allowed to contribute roles
        num_filled
            the number of slots the exhaustive search fills
        """
        if strategy == "greedy":
            return self.evaluate_slots_greedy(max_roles_per_slot)
        elif strategy == "templates_greedy":
            return self.evaluate_slots_as_templates_greedy(max_templates_to_map, num_templates)
        elif strategy == "single_role":
            return self.best_single_role_each_slot()
        elif strategy == "schema":
            return self.best_schema_for_each_template_type(num_templates)
        elif strategy == "exhaustive":
            return self.evaluate_slots_ignoring_event_types(num_filled)
        raise ConfigurationError(
            f"Unknown alignment strategy {strategy}; expected one of {', '.join(STRATEGIES)}"
        )
