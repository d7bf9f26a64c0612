#!/usr/bin/env python3
"""
Heuristic prompt scorer (no vision model)

Scores a team's prompt against the lab item it is supposed to depict,
using only the prompt text.

Guarantees:
- ALWAYS returns an integer score and an explanation (never raises)
- Score stays inside the policy's clamp bounds
- Identical (prompt, lab item) pairs give identical scores for a fixed random source

Policies:
- "mention_rewarded": naming the lab item earns +30
- "mention_penalized": naming the lab item scores 0 (anti-cheese rule)

Notes:
- All matching is lower-case substring containment, so "lab" also matches
  inside "laboratory".
- Jitter comes from the injected random source, not the global one.
"""

from __future__ import annotations
import argparse
import logging
import math
import random
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class RandomSource(Protocol):
    def random(self) -> float: ...


# -----------------------------
# Keyword sets
# -----------------------------

LAB_KEYWORDS: Tuple[str, ...] = (
    "laboratory", "lab", "science", "scientific", "experiment", "research",
    "chemistry", "beaker", "flask", "test", "equipment",
)

LAB_KEYWORDS_EXTENDED: Tuple[str, ...] = LAB_KEYWORDS + (
    "glass", "liquid", "container", "vessel",
)


# -----------------------------
# Result + policy types
# -----------------------------

@dataclass(frozen=True)
class ScoreResult:
    score: int
    explanation: str


@dataclass(frozen=True)
class ScoringPolicy:
    name: str
    penalize_mention: bool = False
    base_score: int = 50
    mention_bonus: int = 30
    keywords: Tuple[str, ...] = LAB_KEYWORDS
    per_keyword: int = 5
    keyword_cap: int = 20
    length_bonus: bool = False
    floor: int = 0
    ceiling: int = 100
    strong_threshold: int = 70
    moderate_threshold: int = 40


MENTION_REWARDED = ScoringPolicy(name="mention_rewarded")

MENTION_PENALIZED = ScoringPolicy(
    name="mention_penalized",
    penalize_mention=True,
    length_bonus=True,
    floor=30,
)

# The "glass, liquid, container, vessel" copies of the scorer.
MENTION_REWARDED_EXTENDED = ScoringPolicy(
    name="mention_rewarded_extended",
    keywords=LAB_KEYWORDS_EXTENDED,
    per_keyword=4,
)

POLICIES: Dict[str, ScoringPolicy] = {
    p.name: p for p in (MENTION_REWARDED, MENTION_PENALIZED, MENTION_REWARDED_EXTENDED)
}


def get_policy(name: str) -> ScoringPolicy:
    try:
        return POLICIES[name]
    except KeyError:
        raise ValueError(
            f"Unknown scoring policy {name!r}; expected one of {sorted(POLICIES)}"
        ) from None


# -----------------------------
# Score components
# -----------------------------

def mentions_item(prompt: str, lab_item: str) -> bool:
    item = lab_item.strip().lower()
    if not item:
        return False
    return item in prompt.lower()


def matched_keywords(prompt: str, keywords: Tuple[str, ...] = LAB_KEYWORDS) -> List[str]:
    p = prompt.lower()
    return [k for k in keywords if k in p]


def keyword_bonus(count: int, per_keyword: int = 5, cap: int = 20) -> int:
    return min(cap, max(0, count) * per_keyword)


def length_bonus(prompt: str) -> int:
    bonus = 0
    if len(prompt) > 50:
        bonus += 10
    if len(prompt) > 100:
        bonus += 10
    return bonus


def jitter(rng: RandomSource) -> int:
    # uniform integer in [-5, 4]
    return math.floor(rng.random() * 10) - 5


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def deterministic_score(prompt: str, lab_item: str, policy: ScoringPolicy = MENTION_REWARDED) -> int:
    """Score before jitter and clamping. Not meaningful for a penalized mention."""
    total = policy.base_score
    if not policy.penalize_mention and mentions_item(prompt, lab_item):
        total += policy.mention_bonus
    hits = matched_keywords(prompt, policy.keywords)
    total += keyword_bonus(len(hits), policy.per_keyword, policy.keyword_cap)
    if policy.length_bonus:
        total += length_bonus(prompt)
    return total


# -----------------------------
# Explanations
# -----------------------------

FORBIDDEN_EXPLANATION = (
    "Forbidden word used: your prompt names the {item} directly. "
    "Describe it without using its name to earn points."
)


def explain(score: int, lab_item: str, policy: ScoringPolicy = MENTION_REWARDED) -> str:
    if score >= policy.strong_threshold:
        return (
            f"The {lab_item} appears to be prominently featured in the image with high "
            f"confidence ({score}%). The prompt clearly describes laboratory equipment."
        )
    if score >= policy.moderate_threshold:
        return (
            f"The {lab_item} may be present in the image with moderate confidence "
            f"({score}%). Some laboratory details are described but not prominently."
        )
    return (
        f"The {lab_item} is not clearly described by the prompt (confidence: {score}%). "
        "The image may be more artistic or abstract rather than showing realistic "
        "laboratory equipment."
    )


# -----------------------------
# Main scoring
# -----------------------------

class PromptScorer:
    def __init__(self, policy: ScoringPolicy = MENTION_REWARDED, rng: Optional[RandomSource] = None):
        self.policy = policy
        self.rng = rng if rng is not None else random.Random()

    def score(self, prompt: str, lab_item: str) -> ScoreResult:
        policy = self.policy

        if policy.penalize_mention and mentions_item(prompt, lab_item):
            logger.debug("Prompt names %r outright; scoring 0", lab_item)
            return ScoreResult(score=0, explanation=FORBIDDEN_EXPLANATION.format(item=lab_item))

        raw = deterministic_score(prompt, lab_item, policy) + jitter(self.rng)
        final = clamp(raw, policy.floor, policy.ceiling)
        logger.debug("Heuristic score for %r under %s: raw=%d final=%d", lab_item, policy.name, raw, final)
        return ScoreResult(score=final, explanation=explain(final, lab_item, policy))


def evaluate_prompt(
    prompt: str,
    lab_item: str,
    policy: ScoringPolicy = MENTION_REWARDED,
    rng: Optional[RandomSource] = None,
) -> ScoreResult:
    return PromptScorer(policy, rng).score(prompt, lab_item)


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Score a prompt against a lab item.")
    parser.add_argument("lab_item")
    parser.add_argument("prompt", nargs="+")
    parser.add_argument("--policy", default=MENTION_REWARDED.name, choices=sorted(POLICIES))
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args(argv)

    rng = random.Random(args.seed)
    result = evaluate_prompt(" ".join(args.prompt), args.lab_item, get_policy(args.policy), rng)
    print(f"{result.score}%")
    print(result.explanation)


if __name__ == "__main__":
    main()
