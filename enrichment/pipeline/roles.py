from __future__ import annotations

import re
from enum import IntEnum
from typing import List, Optional, Tuple


class DecisionLevel(IntEnum):
    UNKNOWN = 0
    NON_DM = 1
    MGMT = 2
    VP_PLUS = 3
    C_SUITE = 4
    FOUNDER_CEO = 5


# Negative (exclude) patterns, checked before inclusives
_NEGATIVE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\bassistant\b", re.I), "assistant"),
    (re.compile(r"\bjunior\b", re.I), "junior"),
    (re.compile(r"\bcoordinator\b", re.I), "coordinator"),
    (re.compile(r"\bspecialist\b", re.I), "specialist"),
    (re.compile(r"\banalyst\b", re.I), "analyst"),
    (re.compile(r"\bintern\b", re.I), "intern"),
    (re.compile(r"\btrainee\b", re.I), "trainee"),
    (re.compile(r"\bsupport\b", re.I), "support"),
]

# Order matters: more specific patterns first; the strongest match wins
_POSITIVE_PATTERNS: list[tuple[re.Pattern[str], DecisionLevel, str]] = [
    (re.compile(r"\bco-?founder\b", re.I), DecisionLevel.FOUNDER_CEO, "founder"),
    (re.compile(r"\bfounder\b", re.I), DecisionLevel.FOUNDER_CEO, "founder"),
    (re.compile(r"\bowner\b", re.I), DecisionLevel.FOUNDER_CEO, "owner"),
    (re.compile(r"\bceo\b|\bchief executive\b", re.I), DecisionLevel.FOUNDER_CEO, "ceo"),
    (re.compile(r"(?<!vice )\bpresident\b", re.I), DecisionLevel.C_SUITE, "president"),
    (re.compile(r"\bmanaging director\b", re.I), DecisionLevel.C_SUITE, "managing director"),
    (re.compile(r"\bchief [a-z]+ officer\b", re.I), DecisionLevel.C_SUITE, "chief officer"),
    (re.compile(r"\bc[fotmi]o\b", re.I), DecisionLevel.C_SUITE, "c-level"),
    (re.compile(r"\bchair(?:man|woman|person)?\b", re.I), DecisionLevel.C_SUITE, "chair"),
    (re.compile(r"\bhead of\b", re.I), DecisionLevel.VP_PLUS, "head of"),
    (re.compile(r"\bvice president\b|\b[se]?vp\b", re.I), DecisionLevel.VP_PLUS, "vp"),
    (re.compile(r"\bdirector\b", re.I), DecisionLevel.VP_PLUS, "director"),
    (re.compile(r"\bpartner\b", re.I), DecisionLevel.VP_PLUS, "partner"),
    (re.compile(r"\blead\b", re.I), DecisionLevel.MGMT, "lead"),
    (re.compile(r"\bmanager\b", re.I), DecisionLevel.MGMT, "manager"),
]


def classify_role(title: Optional[str]) -> Tuple[DecisionLevel, List[str]]:
    """Classify an executive title into a DecisionLevel and return reasons.

    Negative markers win over inclusives. Robust to None/empty inputs.
    """
    reasons: List[str] = []
    tnorm = str(title or "").strip().lower()
    if not tnorm:
        return DecisionLevel.UNKNOWN, reasons
    for pat, label in _NEGATIVE_PATTERNS:
        if pat.search(tnorm):
            reasons.append(f"exclude:{label}")
            return DecisionLevel.NON_DM, reasons
    level = DecisionLevel.UNKNOWN
    for pat, lvl, label in _POSITIVE_PATTERNS:
        if pat.search(tnorm):
            level = max(level, lvl)
            reasons.append(f"title:{label}")
    return level, reasons
