"""Keyword matching and term-overlap relevance."""

from __future__ import annotations

import re

from postsearch.index.codec import IndexedDocument

_TERM_RE = re.compile(r"\w+", re.UNICODE)

TITLE_WEIGHT = 2.0
BODY_WEIGHT = 1.0


def tokenize(query: str) -> list[str]:
	"""Distinct lower-cased terms in first-seen order."""

	seen: list[str] = []
	for term in _TERM_RE.findall(query.lower()):
		if term not in seen:
			seen.append(term)
	return seen


def term_overlap(terms: list[str], document: IndexedDocument) -> float:
	"""Sum of per-term weights; a title hit outweighs a body or author hit."""

	if not terms:
		return 0.0
	title = document.title.lower()
	body = " ".join([document.excerpt, *document.authors]).lower()
	score = 0.0
	for term in terms:
		if term in title:
			score += TITLE_WEIGHT
		elif term in body:
			score += BODY_WEIGHT
	return score


def matches_fragment(fragment: str, document: IndexedDocument) -> bool:
	"""Substring (and therefore prefix) match against title or excerpt."""

	needle = fragment.lower()
	return needle in document.title.lower() or needle in document.excerpt.lower()
