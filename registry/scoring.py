# registry/scoring.py
# Scoring oracle: one best-effort Gemini call per submission

import logging
import re

import requests
from django.conf import settings

logger = logging.getLogger("scribe.registry.scoring")

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

# Content beyond this many characters is not sent to the oracle
MAX_PROMPT_CHARS = 15000

SCORE_FIELDS = {
    "overall": r"Overall quality score.*?(\d+)",
    "creativity": r"Creativity score.*?(\d+)",
    "structure": r"Structure score.*?(\d+)",
    "character_development": r"Character development score.*?(\d+)",
    "marketability": r"Marketability score.*?(\d+)",
}


def build_prompt(content_text: str, requirements=None) -> str:
    prompt = (
        "Analyze the following script as a professional script reviewer. Provide:\n"
        "1. Overall quality score (0-100)\n"
        "2. Creativity score (0-100)\n"
        "3. Structure score (0-100)\n"
        "4. Character development score (0-100)\n"
        "5. Marketability score (0-100)\n"
        "6. Strengths: 3-5 bullet points\n"
        "7. Weaknesses: 3-5 bullet points\n"
        "8. Keywords: 5-8 comma separated tags\n\n"
        f"Script Content:\n{content_text[:MAX_PROMPT_CHARS]}"
    )
    if requirements:
        lines = "\n".join(str(r) for r in requirements)
        prompt += f"\n\nAlso evaluate how well this script meets the following project requirements:\n{lines}"
    return prompt


def _list_after(heading: str, text: str) -> list:
    match = re.search(rf"{heading}[^:\n]*:(.*?)(?:\n\s*\n|\Z)", text, re.IGNORECASE | re.DOTALL)
    if not match:
        return []
    items = re.findall(r"(?:^|\n)\s*(?:\d+[.)]|[*\-•])\s*([^\n]+)", match.group(1))
    if items:
        return [item.strip() for item in items]
    return [part.strip() for part in match.group(1).split(",") if part.strip()]


def parse_score(text: str) -> dict:
    score = {}
    for field, pattern in SCORE_FIELDS.items():
        match = re.search(pattern, text, re.IGNORECASE)
        score[field] = min(100, int(match.group(1))) if match else None
    score["strengths"] = _list_after("strengths", text)
    score["weaknesses"] = _list_after("weaknesses", text)
    score["keywords"] = _list_after("keywords", text)
    return score


def score_content(content_text: str, requirements=None):
    """
    Returns a structured score dict, or None when the oracle is not
    configured or the call fails. Never raises.
    """
    config = settings.REGISTRY
    api_key = config.get("SCORING_API_KEY")
    if not api_key:
        return None

    try:
        response = requests.post(
            GEMINI_URL.format(model=config.get("SCORING_MODEL", "gemini-1.5-pro")),
            params={"key": api_key},
            json={"contents": [{"parts": [{"text": build_prompt(content_text, requirements)}]}]},
            timeout=config.get("SCORING_TIMEOUT", 20.0),
        )
        response.raise_for_status()
        text = response.json()["candidates"][0]["content"]["parts"][0]["text"]
    except (requests.RequestException, ValueError, KeyError, IndexError, TypeError) as e:
        logger.warning(f"Scoring oracle unavailable: {e}")
        return None

    return parse_score(text)
