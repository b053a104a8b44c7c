"""
Library search: prefix matching over documents, folders and categories,
plus an AI-enhanced mode that asks a local Ollama model for better terms.
"""

import json
import logging
import re
import time

from flask import current_app
from sqlalchemy import or_

from biblioteca.models import Category, Document, Folder

logger = logging.getLogger(__name__)

MAX_TERMS = 5


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  KEYWORD SEARCH                                                    ║
# ╚══════════════════════════════════════════════════════════════════════╝


def _escape_like(term):
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def search_library(query: str, limit: int = 25):
    """Case-insensitive prefix search. Returns typed result dicts."""
    query = (query or "").strip()
    if not query:
        return []
    pattern = _escape_like(query) + "%"

    documents = (
        Document.query.filter(
            or_(
                Document.title.ilike(pattern, escape="\\"),
                Document.description.ilike(pattern, escape="\\"),
                Document.author.ilike(pattern, escape="\\"),
            )
        )
        .order_by(Document.title)
        .limit(limit)
        .all()
    )
    folders = (
        Folder.query.filter(Folder.name.ilike(pattern, escape="\\"))
        .order_by(Folder.name)
        .limit(limit)
        .all()
    )
    categories = (
        Category.query.filter(Category.name.ilike(pattern, escape="\\"))
        .order_by(Category.name)
        .limit(limit)
        .all()
    )

    results = [{"type": "document", "id": d.id, "title": d.title} for d in documents]
    results += [{"type": "folder", "id": f.id, "name": f.name} for f in folders]
    results += [{"type": "category", "id": c.id, "name": c.name} for c in categories]
    return results


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  LLM (LOCAL OLLAMA)                                                ║
# ╚══════════════════════════════════════════════════════════════════════╝

_model = None


def _get_model():
    """Lazy-load the local Ollama generative model."""
    global _model
    if _model is not None:
        return _model

    from langchain_community.llms import Ollama

    model_name = current_app.config.get("OLLAMA_MODEL", "llama3.2")
    logger.info(f"Initializing connection to local Ollama (model: {model_name})...")
    _model = Ollama(model=model_name)
    return _model


def generate_answer(prompt: str, retries: int = 3) -> str:
    """Send the prompt to the local Ollama instance and return the response.

    Raises RuntimeError once every attempt has failed.
    """
    model = _get_model()
    last_error = None

    for attempt in range(retries):
        try:
            return model.invoke(prompt)
        except Exception as e:
            last_error = e
            error_str = str(e).lower()
            logger.error(f"Ollama generation failed: {e}")
            if "connection refused" in error_str or "not found" in error_str:
                break
            if attempt < retries - 1:
                time.sleep(2)

    raise RuntimeError(f"Local generation failed: {last_error}")


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  AI-ENHANCED SEARCH                                                ║
# ╚══════════════════════════════════════════════════════════════════════╝


def build_search_prompt(query: str) -> str:
    """Prompt asking the model for refined search terms as JSON."""
    return f"""You are an intelligent search assistant for a virtual library of academic documents.
The library is organised into categories, folders and documents (title, author, description).

RULES:
- Infer what the user is looking for and suggest up to {MAX_TERMS} short search terms.
- Terms should be words likely to START a document title, author name, folder name or category name.
- Keep the user's language.
- Do not invent documents. Return ONLY valid JSON, no markdown, no extra text.

User query: {query}

Return this exact JSON format:
{{
  "terms": ["term one", "term two"]
}}"""


def parse_terms(reply: str):
    """Extract the ``terms`` list from a model reply, tolerating extra text."""
    match = re.search(r"\{.*\}", reply or "", re.DOTALL)
    if not match:
        return []
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError:
        return []
    terms = payload.get("terms") if isinstance(payload, dict) else None
    if not isinstance(terms, list):
        return []

    cleaned = []
    for term in terms:
        if isinstance(term, str) and term.strip() and term.strip() not in cleaned:
            cleaned.append(term.strip())
    return cleaned[:MAX_TERMS]


def enhance_search(query: str, limit: int = 25):
    """Search for ``query`` and for the model's refined terms, merged.

    Returns ``{"query", "terms", "results", "notice"}``; ``notice`` is set
    when the model could not help and only the plain search ran.
    """
    query = (query or "").strip()
    results = search_library(query, limit)
    terms = []
    notice = None

    if query:
        try:
            reply = generate_answer(
                build_search_prompt(query),
                retries=current_app.config.get("AI_SEARCH_RETRIES", 3),
            )
            terms = parse_terms(reply)
            if not terms:
                notice = "The AI assistant gave no suggestions; showing plain results."
        except Exception as e:
            logger.warning(f"AI search unavailable: {e}")
            notice = "The AI assistant is unavailable; showing plain results."

    seen = {(r["type"], r["id"]) for r in results}
    for term in terms:
        for result in search_library(term, limit):
            key = (result["type"], result["id"])
            if key not in seen:
                seen.add(key)
                results.append(result)

    return {"query": query, "terms": terms, "results": results, "notice": notice}
