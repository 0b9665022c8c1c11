"""
authors.py -- Who is committing, merging and reviewing.

Aggregates ci.commithistory.codereview attestations. Each note's detail
carries a `commits` array; every commit has an author (name, email, login,
date), a sha and optional pulls with merged/merged_by/reviews. Authors are
keyed by lower-cased email.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from .adapters import parse_timestamp, unwrap_list
from .models import AuthorReport, AuthorStats
from .registry import RegistryClient

logger = logging.getLogger("posturelens.authors")

COMMIT_HISTORY_PATH = "ci.commithistory.codereview"


def _lower(value: Any) -> str:
    return value.lower() if isinstance(value, str) else ""


def _asset_matches(note: dict, needle: str) -> bool:
    asset = note.get("asset") if isinstance(note.get("asset"), dict) else {}
    return needle in _lower(asset.get("name")) or needle in _lower(asset.get("uuid"))


def commit_author_stats(
    registry: RegistryClient,
    asset_identifier: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    limit: int = 500,
) -> AuthorReport:
    """Per-author commit, merged-PR and review counts, most active first.

    Raises RegistryError if the notes query fails.
    """
    params: dict[str, Any] = {"type": "attestation", "path": COMMIT_HISTORY_PATH, "limit": limit}
    start_dt = parse_timestamp(start) if start else None
    end_dt = parse_timestamp(end) if end else None
    if start_dt is not None:
        params["from"] = start_dt.isoformat()
    if end_dt is not None:
        params["to"] = end_dt.isoformat()

    notes = unwrap_list(registry.query_notes(params))
    if asset_identifier:
        needle = asset_identifier.lower()
        notes = [n for n in notes if _asset_matches(n, needle)]
    logger.info("Aggregating authors over %d commit history notes", len(notes))

    authors: dict[str, AuthorStats] = {}
    latest: dict[str, datetime] = {}
    assets: list[str] = []
    total_commits = total_prs = 0
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None

    for note in notes:
        detail = note.get("detail") if isinstance(note.get("detail"), dict) else {}
        commits = detail.get("commits")
        if not isinstance(commits, list):
            continue
        asset_name = note.get("asset", {}).get("name") if isinstance(note.get("asset"), dict) else None
        if asset_name and asset_name not in assets:
            assets.append(asset_name)

        for commit in commits:
            if not isinstance(commit, dict):
                continue
            author = commit.get("author") if isinstance(commit.get("author"), dict) else {}
            email = author.get("email")
            if not email:
                continue
            total_commits += 1

            key = email.lower()
            stats = authors.get(key)
            if stats is None:
                stats = authors[key] = AuthorStats(
                    name=author.get("name") or "Unknown", email=email, login=author.get("login")
                )
            stats.commit_count += 1

            when = parse_timestamp(author.get("date"))
            if when is not None:
                first_seen = when if first_seen is None or when < first_seen else first_seen
                last_seen = when if last_seen is None or when > last_seen else last_seen
                if key not in latest or when > latest[key]:
                    latest[key] = when
                    sha = commit.get("sha")
                    stats.latest_commit = sha[:7] if isinstance(sha, str) else None

            login = _lower(author.get("login"))
            name = _lower(author.get("name"))
            for pr in commit.get("pulls") or []:
                if not isinstance(pr, dict):
                    continue
                if pr.get("merged"):
                    total_prs += 1
                    merged_by = _lower(pr.get("merged_by"))
                    if merged_by and merged_by in (login, name):
                        stats.pr_count += 1
                for review in pr.get("reviews") or []:
                    reviewer = _lower(review.get("user")) if isinstance(review, dict) else ""
                    if login and reviewer == login:
                        stats.review_count += 1

    ranked = sorted(authors.values(), key=lambda a: a.commit_count, reverse=True)
    return AuthorReport(
        authors=ranked,
        total_commits=total_commits,
        total_prs=total_prs,
        date_from=first_seen.date().isoformat() if first_seen else (start or "unknown"),
        date_to=last_seen.date().isoformat() if last_seen else (end or "unknown"),
        assets=assets,
    )
