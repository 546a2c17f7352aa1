import logging
import math

from Levenshtein import distance as edit_distance
from template_induction.answer_key import GoldEntity
from template_induction.constants import (
    EDIT_DISTANCE_DIVISOR,
    LONG_STRING_LENGTH,
    LONG_STRING_LENGTH_DIFF,
)
from typing import NamedTuple, Optional, Sequence, Tuple

LOG = logging.getLogger(__name__)


class EntityMatchResult(NamedTuple):
    """Counts from comparing one slot's guesses to its gold entities

    Attributes
    ----------
    correct
        the number of gold entities matched by at least one guess
    incorrect
        the number of guesses that matched no gold entity, not counting
        near-duplicates of another wrong guess
    missed
        the number of unmatched non-optional gold entities
    guesses_matched
        for each guess, whether it matched a gold entity
    golds_matched
        for each gold entity, how many guesses matched it
    """

    correct: int
    incorrect: int
    missed: int
    guesses_matched: Tuple[bool, ...] = ()
    golds_matched: Tuple[int, ...] = ()


class PRF1(NamedTuple):
    precision: float
    recall: float
    f1: float


def replace_parentheses(s: str) -> str:
    """Undoes the parser's bracket escaping so guesses compare to gold text"""
    if "RB-" in s or "rb-" in s:
        s = s.replace("-LRB- ", "(").replace(" -RRB-", ")")
        s = s.replace("-lrb- ", "(").replace(" -rrb-", ")")
    return s


def similar_strings(one: str, two: str) -> bool:
    """Whether two guesses probably name the same thing (plural or added modifiers)"""
    if one.lower() == two.lower():
        return True
    if one.lower() == (two + "s").lower() or one.lower() == (two + "es").lower():
        return True
    if one.endswith(two) or two.endswith(one):
        return True
    for suffix in ("s", "es"):
        if one.endswith(two + suffix) or two.endswith(one + suffix):
            return True
    return False


def _rightmost_word(s: str) -> str:
    return s[s.rfind(" ") + 1 :]


def _contains_at_word_start(outer: str, inner: str) -> bool:
    # Only the first occurrence counts; "maid" must not match "aid"
    index = outer.find(inner)
    return index > -1 and (index == 0 or outer[index - 1] == " ")


def string_match_to_gold(gold: GoldEntity, guess: str) -> bool:
    """Whether a guessed string matches any alias of a gold entity

    A match is one of: the alias contained in the guess (or the guess in
    the alias) starting at a word boundary, unless the contained string
    is the object of an "of" phrase; a small edit distance between two
    long strings; or the same rightmost word.
    """
    guess = replace_parentheses(guess).lower()
    guess_rightmost = _rightmost_word(guess)

    for alias in gold.mentions:
        alias = alias.lower()
        ofmatch = False

        # Don't let "party of ohio" match "ohio"
        if _contains_at_word_start(guess, alias):
            if "of " + alias not in guess:
                return True
            LOG.debug(f"Match blocked by 'of': gold={alias} guess={guess}")
            ofmatch = True

        if _contains_at_word_start(alias, guess):
            if "of " + guess not in alias:
                return True
            LOG.debug(f"Match blocked by 'of': gold={alias} guess={guess}")
            ofmatch = True

        # Typographical variants of long strings
        if (
            len(guess) > LONG_STRING_LENGTH
            and len(alias) > LONG_STRING_LENGTH
            and abs(len(guess) - len(alias)) < LONG_STRING_LENGTH_DIFF
            and edit_distance(guess, alias) < len(guess) // EDIT_DISTANCE_DIVISOR
        ):
            LOG.debug(f"Edit distance match: {guess} with gold {alias}")
            return True

        if not ofmatch and _rightmost_word(alias) == guess_rightmost:
            LOG.debug(f"Rightmost word match: {guess} with gold {alias}")
            return True

    return False


def string_match_to_golds(golds: Sequence[GoldEntity], guess: str) -> Optional[GoldEntity]:
    for gold in golds:
        if string_match_to_gold(gold, guess):
            return gold
    return None


def duplicates_that_were_wrong(guesses: Sequence[str], guesses_matched: Sequence[bool]) -> int:
    """Counts unmatched guesses that are near-duplicates of an earlier
    unmatched guess; each guess is counted at most once
    """
    duplicates = 0
    found = [False] * len(guesses)
    for i in range(len(guesses) - 1):
        if guesses_matched[i] or found[i]:
            continue
        for j in range(i + 1, len(guesses)):
            if not guesses_matched[j] and not found[j]:
                if similar_strings(guesses[i], guesses[j]):
                    LOG.debug(f"Similar strings: {guesses[i]} / {guesses[j]}")
                    found[j] = True
                    duplicates += 1
    return duplicates


def evaluate_entities(
    golds: Optional[Sequence[GoldEntity]], guesses: Sequence[str]
) -> EntityMatchResult:
    """Compares one slot's guessed strings to its gold entities

    Each guess is credited to the first gold entity it matches. A gold
    entity matched by several guesses counts as one correct answer, and
    only the guesses that match nothing are wrong.

    Parameters
    ----------
    golds
        the slot's gold entities (None is treated as no gold)
    guesses
        the surface strings of the entities labeled for the slot
    """
    golds = list(golds) if golds is not None else []
    guesses = list(guesses)
    golds_matched = [0] * len(golds)
    guesses_matched = [False] * len(guesses)

    for gi, guess in enumerate(guesses):
        for i, gold in enumerate(golds):
            if string_match_to_gold(gold, guess):
                golds_matched[i] += 1
                guesses_matched[gi] = True
                break

    correct = sum(1 for n in golds_matched if n > 0)
    missed = sum(
        1 for gold, n in zip(golds, golds_matched) if n == 0 and not gold.optional
    )
    incorrect = guesses_matched.count(False)
    incorrect -= duplicates_that_were_wrong(guesses, guesses_matched)
    return EntityMatchResult(
        correct, incorrect, missed, tuple(guesses_matched), tuple(golds_matched)
    )


def score(correct: int, incorrect: int, missed: int) -> PRF1:
    """Precision, recall and F1 from match counts

    A zero denominator yields NaN for that measure (and for F1); F1 is 0
    when precision and recall are both 0.
    """
    nan = float("nan")
    precision = correct / (correct + incorrect) if correct + incorrect > 0 else nan
    recall = correct / (correct + missed) if correct + missed > 0 else nan
    if math.isnan(precision) or math.isnan(recall):
        f1 = nan
    elif precision + recall == 0:
        f1 = 0.0
    else:
        f1 = 2 * precision * recall / (precision + recall)
    return PRF1(precision, recall, f1)
