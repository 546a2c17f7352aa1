import json
import logging

from template_induction.exceptions import ConfigurationError
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

LOG = logging.getLogger(__name__)


class GoldEntity(NamedTuple):
    """A gold slot filler: any one of its alias strings counts as a match"""

    mentions: Tuple[str, ...]
    optional: bool = False


class GoldTemplate(NamedTuple):
    incident_type: str
    slots: Tuple[Tuple[GoldEntity, ...], ...]


class AnswerKey:
    def __init__(
        self, templates_by_story: Dict[str, List[GoldTemplate]], num_slots: int
    ):
        """Read-only lookup of gold templates by story name

        Parameters
        ----------
        templates_by_story
            maps each story name to the gold templates filled for it.
            Stories without an applicable template may be left out
        num_slots
            the number of slots in every gold template
        """
        self._templates = {
            story.lower(): list(plates) for story, plates in templates_by_story.items()
        }
        self._num_slots = num_slots
        for story, plates in self._templates.items():
            for plate in plates:
                if len(plate.slots) != num_slots:
                    raise ConfigurationError(
                        f"Template for {story} has {len(plate.slots)} slots, expected {num_slots}"
                    )

    def num_slots(self) -> int:
        return self._num_slots

    def get_templates(self, story: str) -> Optional[List[GoldTemplate]]:
        plates = self._templates.get(story.lower())
        return plates if plates else None

    def incident_types(self) -> List[str]:
        types = set()
        for plates in self._templates.values():
            for plate in plates:
                types.add(plate.incident_type)
        return sorted(types)

    def __contains__(self, story: str) -> bool:
        return self.get_templates(story) is not None

    @classmethod
    def from_json(cls, path: str) -> "AnswerKey":
        """Loads an answer key from a JSON file

        The file holds {"num_slots": N, "stories": {name: [{"incident_type":
        ..., "slots": [[{"mentions": [...], "optional": bool}, ...], ...]}]}}
        """
        with open(path) as f:
            raw = json.load(f)
        try:
            num_slots = raw["num_slots"]
            templates = {
                story: [
                    GoldTemplate(
                        plate["incident_type"],
                        tuple(
                            tuple(
                                GoldEntity(
                                    tuple(g["mentions"]), g.get("optional", False)
                                )
                                for g in slot
                            )
                            for slot in plate["slots"]
                        ),
                    )
                    for plate in plates
                ]
                for story, plates in raw["stories"].items()
            }
        except (KeyError, TypeError) as e:
            raise ConfigurationError(f"Malformed answer key {path}: {e}") from e
        LOG.info(f"Loaded gold templates for {len(templates)} stories from {path}")
        return cls(templates, num_slots)


def get_all_gold_slots(
    templates: Iterable[GoldTemplate], num_slots: int
) -> List[List[GoldEntity]]:
    """Merges each slot's gold entities across templates, dropping repeats"""
    slots = [[] for _ in range(num_slots)]
    for plate in templates:
        for i, slot in enumerate(plate.slots):
            for gold in slot:
                if gold not in slots[i]:
                    slots[i].append(gold)
    return slots


def remove_optionals(golds: Iterable[GoldEntity]) -> List[GoldEntity]:
    return [g for g in golds if not g.optional]


def templates_containing(
    incident_type: str, templates: Optional[Iterable[GoldTemplate]]
) -> Optional[List[GoldTemplate]]:
    """Selects the templates whose incident type mentions the given type"""
    if templates is None:
        return None
    selected = [t for t in templates if incident_type.lower() in t.incident_type.lower()]
    return selected if selected else None
