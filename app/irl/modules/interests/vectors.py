"""
Interest vectors for person recommendations.

A person's vector holds their interest levels ordered by active interest id
(missing interests count as 0), L2-normalised and stored as JSON on the
person row. The vector is NULL when every level is zero. Whenever the set of
active interests changes every stored vector is rebuilt, so all stored
vectors always share the same dimension.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

import numpy as np
from sqlalchemy import select

from app.irl.modules.interests.models import Interest, PersonInterest
from app.irl.modules.persons.models import Person

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def active_interest_ids(s: "Session") -> list[int]:
    return list(s.execute(select(Interest.id).where(Interest.deleted.is_(False)).order_by(Interest.id.asc())).scalars())


def build_vector(levels: dict[int, float], interest_ids: Sequence[int]) -> np.ndarray:
    return np.asarray([float(levels.get(iid, 0.0)) for iid in interest_ids], dtype=float)


def normalize(vec: np.ndarray) -> np.ndarray | None:
    norm = float(np.linalg.norm(vec))
    if norm == 0.0:
        return None
    return vec / norm


def _levels_for(s: "Session", person_id: int) -> dict[int, float]:
    rows = s.execute(
        select(PersonInterest.interest_id, PersonInterest.level).where(PersonInterest.person_id == person_id)
    ).all()
    return {iid: float(level) for iid, level in rows}


def update_person_vector(s: "Session", person: Person, interest_ids: Sequence[int] | None = None) -> list[float] | None:
    ids = active_interest_ids(s) if interest_ids is None else interest_ids
    vec = normalize(build_vector(_levels_for(s, person.id), ids)) if ids else None
    person.interest_vector = vec.tolist() if vec is not None else None
    return person.interest_vector


def rebuild_all_vectors(s: "Session") -> int:
    """Recompute every person's vector against the current active interest set."""
    ids = active_interest_ids(s)
    people = s.execute(select(Person).where(Person.deleted.is_(False))).scalars().all()
    for person in people:
        update_person_vector(s, person, ids)
    logger.info("Rebuilt interest vectors (people=%s dimension=%s)", len(people), len(ids))
    return len(people)


def rank_by_similarity(
    target: Sequence[float], candidates: Sequence[tuple[Person, Sequence[float]]], limit: int
) -> list[tuple[Person, float]]:
    """Order candidates by cosine similarity to target, highest first."""
    t = np.asarray(target, dtype=float)
    usable = [(p, v) for p, v in candidates if v is not None and len(v) == len(t)]
    if not usable or not t.size:
        return []
    matrix = np.asarray([v for _p, v in usable], dtype=float)
    norms = np.linalg.norm(matrix, axis=1) * float(np.linalg.norm(t))
    norms[norms == 0.0] = 1.0
    sims = (matrix @ t) / norms
    order = np.argsort(-sims, kind="stable")[:limit]
    return [(usable[i][0], float(sims[i])) for i in order]
