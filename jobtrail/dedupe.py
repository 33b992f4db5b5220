"""Duplicate detection, merge previews and resolution for imported applications."""

import logging
from collections import defaultdict
from datetime import date, datetime, time, timezone
from itertools import combinations, product
from typing import Any, Iterable, Optional, Union

from rapidfuzz import process
from rapidfuzz.distance import Levenshtein

from .config import Config, get_config
from .models import (
    CANONICAL_FIELDS,
    Application,
    DuplicateCheckResult,
    DuplicateGroup,
    DuplicateMatch,
    DuplicateMember,
    DuplicateSummary,
    FieldMapping,
    PairScore,
    RawRow,
    ResolutionOutcome,
)
from .normalize import normalize_text, parse_date, split_list

logger = logging.getLogger(__name__)

LEGAL_SUFFIXES = {
    "inc", "incorporated", "llc", "ltd", "limited", "corp", "corporation",
    "co", "company", "gmbh", "plc", "ag", "sa",
}
SUFFIX_MATCH_SCORE = 0.9
COMPONENT_FLOORS = {"company": 0.8, "position": 0.7, "location": 0.8}
STATUS_AGREEMENT_CONFIDENCE = 0.8
MAX_CHECK_MATCHES = 5

LIST_FIELDS = ("tags", "requirements")
CONCAT_FIELDS = ("notes", "job_description")
TEXT_SEPARATOR = "\n\n---\n\n"


# -- scoring ---------------------------------------------------------------


def _strip_suffixes(name: Any) -> str:
    tokens = normalize_text(name).split()
    while len(tokens) > 1 and tokens[-1] in LEGAL_SUFFIXES:
        tokens.pop()
    return " ".join(tokens)


def _text_similarity(a: Any, b: Any) -> float:
    left, right = normalize_text(a), normalize_text(b)
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    return Levenshtein.normalized_similarity(left, right)


def company_similarity(a: Any, b: Any) -> float:
    """Similarity of two company names, ignoring case, punctuation and legal suffixes."""
    left, right = normalize_text(a), normalize_text(b)
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    left, right = _strip_suffixes(left), _strip_suffixes(right)
    if left == right:
        return SUFFIX_MATCH_SCORE
    return Levenshtein.normalized_similarity(left, right)


def position_similarity(a: Any, b: Any) -> float:
    return _text_similarity(a, b)


def location_similarity(a: Any, b: Any) -> float:
    return _text_similarity(a, b)


def date_proximity(a: Optional[date], b: Optional[date], window_days: int) -> float:
    """1.0 for the same day, falling linearly to 0 at window_days apart."""
    if a is None or b is None:
        return 0.0
    days = abs((a - b).days)
    if window_days <= 0:
        return 1.0 if days == 0 else 0.0
    return max(0.0, 1.0 - days / window_days)


def _url_key(value: Any) -> str:
    text = str(value or "").strip().lower().rstrip("/")
    for prefix in ("https://", "http://"):
        if text.startswith(prefix):
            text = text[len(prefix):]
    if text.startswith("www."):
        text = text[4:]
    return text


def job_url_match(a: Any, b: Any) -> float:
    left, right = _url_key(a), _url_key(b)
    return 1.0 if left and left == right else 0.0


def _present(value: Any) -> bool:
    return bool(str(value or "").strip())


def _percent(value: float) -> str:
    return f"{round(value * 100)}%"


def score_pair(a: dict[str, Any], b: dict[str, Any], config: Optional[Config] = None) -> PairScore:
    """Weighted similarity of two canonical records.

    Company and position always count towards the denominator; location,
    applied date and job URL only when both records have a value. A component
    below its floor contributes nothing. An identical job URL short-circuits to
    1.0.
    """
    config = config or get_config()
    settings = config.duplicates
    weights = settings.weights

    if job_url_match(a.get("job_url"), b.get("job_url")) == 1.0:
        return PairScore(score=1.0, reasons=["Identical job URL"])

    total = weighted = 0.0
    reasons: list[str] = []

    def add(field: str, similarity: float, reason: str) -> None:
        nonlocal weighted
        if similarity >= COMPONENT_FLOORS.get(field, 0.0) and similarity > 0:
            weighted += weights.get(field, 0.0) * similarity
            reasons.append(reason)

    total += weights.get("company", 0.0)
    similarity = company_similarity(a.get("company"), b.get("company"))
    add("company", similarity,
        "Same company name" if similarity == 1.0 else f"Similar company name ({_percent(similarity)})")

    total += weights.get("position", 0.0)
    similarity = position_similarity(a.get("position"), b.get("position"))
    add("position", similarity,
        "Same position" if similarity == 1.0 else f"Similar position ({_percent(similarity)})")

    if _present(a.get("location")) and _present(b.get("location")):
        total += weights.get("location", 0.0)
        similarity = location_similarity(a.get("location"), b.get("location"))
        add("location", similarity,
            "Same location" if similarity == 1.0 else f"Similar location ({_percent(similarity)})")

    left = parse_date(a.get("applied_date"), day_first=config.day_first)
    right = parse_date(b.get("applied_date"), day_first=config.day_first)
    if left and right:
        total += weights.get("applied_date", 0.0)
        proximity = date_proximity(left, right, settings.date_window_days)
        days = abs((left - right).days)
        add("applied_date", proximity,
            "Applied on the same day" if days == 0 else f"Applied {days} days apart")

    if _present(a.get("job_url")) and _present(b.get("job_url")):
        total += weights.get("job_url", 0.0)

    score = weighted / total if total > 0 else 0.0
    return PairScore(score=round(min(1.0, score), 4), reasons=reasons)


# -- records ---------------------------------------------------------------


def row_values(row: RawRow, mapping: FieldMapping) -> dict[str, Any]:
    """Canonical field values of a mapped CSV row."""
    return {
        field: str(row.get(column) or "").strip()
        for field, column in mapping.items()
        if field in CANONICAL_FIELDS
    }


def _naive(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _row_timestamp(values: dict[str, Any], config: Config) -> Optional[datetime]:
    applied = parse_date(values.get("applied_date"), day_first=config.day_first)
    return datetime.combine(applied, time.min) if applied else None


def newest_first(members: list[DuplicateMember]) -> list[DuplicateMember]:
    """Order members newest first; later rows win ties, missing timestamps sort last."""

    def key(member: DuplicateMember):
        stamp = _naive(member.timestamp) or datetime.min
        return (stamp, 0 if member.is_existing else 1, member.index if member.index is not None else -1)

    return sorted(members, key=key, reverse=True)


def _merge_lists(members: list[DuplicateMember], field: str) -> list[str]:
    merged: list[str] = []
    seen: set[str] = set()
    for member in members:
        for item in split_list(member.values.get(field)):
            if item.lower() not in seen:
                seen.add(item.lower())
                merged.append(item)
    return merged


def _merge_text(members: list[DuplicateMember], field: str) -> str:
    unique: list[str] = []
    for member in members:
        text = str(member.values.get(field) or "").strip()
        if text and text.lower() not in [u.lower() for u in unique]:
            unique.append(text)
    kept = [
        text for text in unique
        if not any(text.lower() != other.lower() and text.lower() in other.lower() for other in unique)
    ]
    return TEXT_SEPARATOR.join(kept)


def build_merge_preview(members: list[DuplicateMember]) -> dict[str, Any]:
    """Synthesise the record a group would collapse into, without touching the members."""
    ordered = newest_first(members)
    preview: dict[str, Any] = {}
    for field in CANONICAL_FIELDS:
        if field in LIST_FIELDS:
            preview[field] = _merge_lists(members, field)
        elif field in CONCAT_FIELDS:
            preview[field] = _merge_text(ordered, field)
        else:
            preview[field] = next(
                (member.values[field] for member in ordered if _present(member.values.get(field))),
                "",
            )
    return preview


# -- grouping --------------------------------------------------------------


class _DisjointSet:
    def __init__(self, size: int):
        self.parent = list(range(size))

    def find(self, node: int) -> int:
        while self.parent[node] != node:
            self.parent[node] = self.parent[self.parent[node]]
            node = self.parent[node]
        return node

    def union(self, a: int, b: int) -> int:
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return root_a
        # Lower node stays root so component ids are stable.
        if root_b < root_a:
            root_a, root_b = root_b, root_a
        self.parent[root_b] = root_a
        return root_a


def _company_is_required(config: Config) -> bool:
    """True when no pair can reach the threshold without a company match."""
    weights = config.duplicates.weights
    total = sum(weights.values())
    if total <= 0:
        return False
    without_company = total - weights.get("company", 0.0)
    return without_company / total < config.duplicates.similarity_threshold


def _similar_company_pairs(records: list[DuplicateMember]) -> set[tuple[int, int]]:
    """Every pair whose company names reach the company floor.

    Each distinct suffix-stripped name is compared once against the names
    after it, so the result is exactly the set of pairs company_similarity
    would let through.
    """
    floor = COMPONENT_FLOORS["company"]
    by_name: dict[str, list[int]] = defaultdict(list)
    for position, record in enumerate(records):
        name = _strip_suffixes(record.values.get("company"))
        if name:
            by_name[name].append(position)

    names = list(by_name)
    found: set[tuple[int, int]] = set()
    for offset, name in enumerate(names):
        members = by_name[name]
        found.update(combinations(members, 2))
        later = names[offset + 1:]
        if not later:
            continue
        for _, _, match in process.extract(
            name,
            later,
            scorer=Levenshtein.normalized_similarity,
            processor=None,
            score_cutoff=floor,
            limit=None,
        ):
            for i, j in product(members, by_name[later[match]]):
                found.add((min(i, j), max(i, j)))
    return found


def _candidate_pairs(records: list[DuplicateMember], config: Config) -> Iterable[tuple[int, int]]:
    """Pairs worth scoring; existing-vs-existing pairs are never compared.

    When no pair can reach the threshold without a company match, only pairs
    with similar company names or the same job URL are scored. That drops no
    pair the full comparison would have kept.
    """
    if not _company_is_required(config):
        pairs = combinations(range(len(records)), 2)
    else:
        found = _similar_company_pairs(records)
        by_url: dict[str, list[int]] = defaultdict(list)
        for position, record in enumerate(records):
            url = _url_key(record.values.get("job_url"))
            if url:
                by_url[url].append(position)
        for members in by_url.values():
            found.update(combinations(members, 2))
        pairs = sorted(found)

    for i, j in pairs:
        if records[i].is_existing and records[j].is_existing:
            continue
        yield i, j


def recommend_action(group: DuplicateGroup, config: Optional[Config] = None) -> str:
    """Suggest how to resolve a group from its confidence and status agreement."""
    config = config or get_config()
    settings = config.duplicates
    if group.confidence >= settings.high_confidence_threshold:
        return "merge"
    if group.confidence > STATUS_AGREEMENT_CONFIDENCE:
        statuses = {
            normalize_text(m.values.get("status")) for m in group.members if _present(m.values.get("status"))
        }
        return "merge" if len(statuses) <= 1 else "keep_newest"
    if group.confidence >= settings.similarity_threshold:
        return "keep_newest"
    return "keep_all"


def detect_duplicates(
    rows: list[RawRow],
    mapping: FieldMapping,
    existing: Optional[list[Application]] = None,
    config: Optional[Config] = None,
    row_indices: Optional[Iterable[int]] = None,
) -> list[DuplicateGroup]:
    """Group likely duplicates among incoming rows and existing records.

    Groups are connected components of the graph whose edges are pairs scoring
    at least similarity_threshold, so a chain of near-duplicates collapses into
    one group. Only rows in row_indices take part when it is given.
    """
    config = config or get_config()
    threshold = config.duplicates.similarity_threshold
    indices = sorted(set(row_indices)) if row_indices is not None else range(len(rows))

    records: list[DuplicateMember] = []
    for index in indices:
        values = row_values(rows[index], mapping)
        records.append(
            DuplicateMember(index=index, values=values, timestamp=_row_timestamp(values, config))
        )
    for application in existing or []:
        records.append(
            DuplicateMember(
                application_id=application.id,
                is_existing=True,
                values=application.to_values(),
                timestamp=application.updated_at,
            )
        )

    forest = _DisjointSet(len(records))
    best_edge: dict[int, PairScore] = {}
    compared = 0
    for i, j in _candidate_pairs(records, config):
        compared += 1
        pair = score_pair(records[i].values, records[j].values, config)
        if pair.score < threshold:
            continue
        edges = [pair]
        for node in (i, j):
            root = forest.find(node)
            if root in best_edge:
                edges.append(best_edge.pop(root))
        root = forest.union(i, j)
        best_edge[root] = max(edges, key=lambda edge: edge.score)

    components: dict[int, list[int]] = defaultdict(list)
    for position in range(len(records)):
        components[forest.find(position)].append(position)

    groups: list[DuplicateGroup] = []
    for root in sorted(components):
        positions = components[root]
        if len(positions) < 2:
            continue
        members = [records[p] for p in positions]
        members.sort(key=lambda m: (m.is_existing, m.index if m.index is not None else 0))
        edge = best_edge[root]
        group = DuplicateGroup(
            id=f"group-{len(groups) + 1}",
            members=members,
            confidence=edge.score,
            match_reasons=list(edge.reasons),
            merge_preview=build_merge_preview(members),
        )
        group.recommended_action = recommend_action(group, config)
        groups.append(group)

    logger.info(
        f"Duplicate scan compared {compared} pairs and found {len(groups)} groups"
    )
    return groups


def check_duplicate(
    candidate: Union[Application, dict[str, Any]],
    existing: list[Application],
    config: Optional[Config] = None,
) -> DuplicateCheckResult:
    """Real-time check of a single record against stored applications."""
    config = config or get_config()
    settings = config.duplicates

    if isinstance(candidate, Application):
        candidate_id, values = candidate.id, candidate.to_values()
    else:
        candidate_id, values = candidate.get("id"), candidate

    matches = []
    for application in existing:
        if candidate_id and application.id == candidate_id:
            continue
        pair = score_pair(values, application.to_values(), config)
        if pair.score >= settings.candidate_threshold:
            matches.append(DuplicateMatch(application=application, similarity=pair.score, reasons=pair.reasons))

    matches.sort(key=lambda match: match.similarity, reverse=True)
    matches = matches[:MAX_CHECK_MATCHES]
    best = matches[0].similarity if matches else 0.0

    if best >= settings.high_confidence_threshold:
        band = "high"
    elif best >= settings.similarity_threshold:
        band = "medium"
    else:
        band = "low"

    return DuplicateCheckResult(
        is_duplicate=best >= settings.high_confidence_threshold,
        matches=matches,
        confidence=band,
    )


def summarize_duplicates(groups: list[DuplicateGroup], config: Optional[Config] = None) -> DuplicateSummary:
    """Count groups per confidence band and list the recommended actions."""
    config = config or get_config()
    settings = config.duplicates
    summary = DuplicateSummary(total_duplicates=sum(len(g.members) - 1 for g in groups))

    for group in groups:
        if group.confidence >= settings.high_confidence_threshold:
            summary.high_confidence_groups += 1
        elif group.confidence >= settings.similarity_threshold:
            summary.medium_confidence_groups += 1
        else:
            summary.low_confidence_groups += 1

    actions: dict[str, int] = defaultdict(int)
    for group in groups:
        actions[group.recommended_action] += 1
    labels = {
        "merge": "Merge {n} group(s) that look like the same application",
        "keep_newest": "Keep the newest record in {n} group(s) with conflicting details",
        "keep_oldest": "Keep the oldest record in {n} group(s)",
        "delete_duplicates": "Delete the extra records in {n} group(s)",
        "keep_all": "Review {n} low-confidence group(s) manually",
    }
    summary.recommended_actions = [labels[action].format(n=actions[action]) for action in labels if actions[action]]
    return summary


# -- resolution ------------------------------------------------------------


def recommended_resolutions(groups: list[DuplicateGroup]) -> dict[str, str]:
    """Map each group id to its recommended action."""
    return {group.id: group.recommended_action for group in groups}


def _keep_only(group: DuplicateGroup, kept: DuplicateMember, outcome: ResolutionOutcome) -> None:
    for member in group.members:
        if member is kept:
            continue
        if member.is_existing:
            if member.application_id:
                outcome.deleted_existing_ids.append(member.application_id)
        elif member.index is not None:
            outcome.removed_rows.add(member.index)


def apply_resolutions(
    groups: list[DuplicateGroup],
    resolutions: Optional[dict[str, str]] = None,
) -> ResolutionOutcome:
    """Apply per-group actions; groups without a resolution are kept as they are."""
    resolutions = resolutions or {}
    known = {group.id for group in groups}
    for group_id in resolutions:
        if group_id not in known:
            logger.warning(f"Ignoring resolution for unknown duplicate group {group_id}")

    outcome = ResolutionOutcome()
    for group in groups:
        action = resolutions.get(group.id, "keep_all")

        if action == "keep_all":
            continue

        if action == "merge":
            incoming = group.row_indices
            if not incoming:
                continue
            target = incoming[0]
            outcome.merged_rows[target] = dict(group.merge_preview or build_merge_preview(group.members))
            outcome.removed_rows.update(incoming[1:])
            outcome.deleted_existing_ids.extend(group.existing_ids)
        elif action == "keep_newest":
            _keep_only(group, newest_first(group.members)[0], outcome)
        elif action == "keep_oldest":
            _keep_only(group, newest_first(group.members)[-1], outcome)
        elif action == "delete_duplicates":
            _keep_only(group, group.members[0], outcome)
        else:
            raise ValueError(f"Unknown resolution action '{action}' for {group.id}")

        logger.debug(f"Resolved {group.id} with {action}")

    return outcome
