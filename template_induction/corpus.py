import json
import logging

from template_induction.constants import (
    DEP_SEPARATOR,
    PRONOUNS,
    STR_TO_ENTITY_TYPE,
    EntityType,
)
from template_induction.exceptions import ConfigurationError
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Set

LOG = logging.getLogger(__name__)


class Mention(NamedTuple):
    """A single occurrence of an entity, reduced to its syntactic context

    Parameters
    ----------
    token
        the head token of the mention
    lemma
        the lemmatized head token
    dep
        the dependency relation and its governor, e.g. "dobj--kidnap"
    ne_type
        the coarse semantic type of the mention
    text
        the raw mention string, if available
    """

    token: str
    lemma: str
    dep: Optional[str]
    ne_type: EntityType = EntityType.OTHER
    text: Optional[str] = None

    @property
    def verb(self) -> Optional[str]:
        return governor_of(self.dep) if self.dep else None


def governor_of(dep: str) -> str:
    """Returns the governor (predicate) half of a relation+governor string"""
    idx = dep.find(DEP_SEPARATOR)
    return dep if idx < 0 else dep[idx + len(DEP_SEPARATOR) :]


class Entity:
    def __init__(
        self,
        mentions: Iterable[Mention],
        types: Optional[Iterable[EntityType]] = None,
    ):
        """A coreference chain reduced to its mentions

        Parameters
        ----------
        mentions
            the entity's mentions, in document order
        types
            additional semantic types (e.g. from a lexical resource);
            the types of all mentions are always included
        """
        self.mentions = list(mentions)
        self.types: Set[EntityType] = {m.ne_type for m in self.mentions}
        if types is not None:
            self.types.update(types)
        self._labels: Set[int] = set()
        self.core_token, self.core_token_raw = self._find_core_token()

    def _find_core_token(self):
        # Longest non-pronominal mention; the first mention otherwise
        best = None
        for m in self.mentions:
            surface = m.text if m.text else m.token
            if m.token.lower() in PRONOUNS:
                continue
            if best is None or len(surface) > len(best.text or best.token):
                best = m
        if best is None:
            if not self.mentions:
                return None, None
            best = self.mentions[0]
        return best.lemma.lower(), best.text if best.text else best.token

    @property
    def deps(self) -> List[Optional[str]]:
        return [m.dep for m in self.mentions]

    @property
    def labels(self) -> Set[int]:
        return self._labels

    def num_mentions(self) -> int:
        return len(self.mentions)

    def add_label(self, label: int) -> None:
        self._labels.add(label)

    def has_label(self, label: int) -> bool:
        return label in self._labels

    def has_a_label(self) -> bool:
        return len(self._labels) > 0

    def clear_labels(self) -> None:
        self._labels.clear()

    def __repr__(self):
        deps = ", ".join(str(d) for d in self.deps)
        return f"Entity({self.core_token_raw!r}, [{deps}])"


class Document:
    def __init__(self, name: str, entities: Iterable[Entity]):
        self.name = name
        self.entities = list(entities)

    def __len__(self):
        return len(self.entities)

    def __iter__(self):
        return iter(self.entities)

    def __getitem__(self, idx):
        return self.entities[idx]


def mention_from_dict(d: Dict[str, Any]) -> Mention:
    ne_type = d.get("ne_type", "OTHER")
    if ne_type not in STR_TO_ENTITY_TYPE:
        raise ConfigurationError(f"Unknown entity type {ne_type}")
    token = d["token"]
    return Mention(
        token=token,
        lemma=d.get("lemma", token),
        dep=d.get("dep"),
        ne_type=STR_TO_ENTITY_TYPE[ne_type],
        text=d.get("text"),
    )


def entity_from_dict(d: Dict[str, Any]) -> Entity:
    extra_types = [STR_TO_ENTITY_TYPE[t] for t in d.get("types", [])]
    return Entity([mention_from_dict(m) for m in d["mentions"]], extra_types)


def load_corpus(path: str) -> List[Document]:
    """Loads an entity corpus from a JSON lines file

    Each line holds one document:
    {"name": ..., "entities": [{"mentions": [{"token", "lemma", "dep",
    "ne_type", "text"}, ...], "types": [...]}, ...]}

    Parameters
    ----------
    path
        the path to the corpus file
    """
    documents = []
    with open(path) as f:
        for lineno, line in enumerate(f):
            line = line.strip()
            if not line:
                continue
            try:
                raw = json.loads(line)
                entities = [entity_from_dict(e) for e in raw["entities"]]
                documents.append(Document(raw["name"], entities))
            except (KeyError, TypeError, json.JSONDecodeError) as e:
                raise ConfigurationError(
                    f"Malformed document on line {lineno + 1} of {path}: {e}"
                ) from e
    LOG.info(f"Loaded {len(documents)} documents from {path}")
    return documents
