from unittest import mock

import requests
from django.test import SimpleTestCase, override_settings

from registry.scoring import build_prompt, parse_score, score_content

ANALYSIS = """Overall quality score: 82
Creativity score: 90
Structure score: 75
Character development score: 140
Marketability score: 68

Strengths:
- Vivid world building
- Sharp dialogue

Weaknesses:
1. Slow second act
2. Thin antagonist

Keywords: cyberpunk, noir, heist
"""


class ParseScoreTests(SimpleTestCase):
    def test_scores_and_lists(self):
        score = parse_score(ANALYSIS)

        self.assertEqual(score["overall"], 82)
        self.assertEqual(score["creativity"], 90)
        self.assertEqual(score["structure"], 75)
        self.assertEqual(score["character_development"], 100)  # capped
        self.assertEqual(score["marketability"], 68)
        self.assertEqual(score["strengths"], ["Vivid world building", "Sharp dialogue"])
        self.assertEqual(score["weaknesses"], ["Slow second act", "Thin antagonist"])
        self.assertEqual(score["keywords"], ["cyberpunk", "noir", "heist"])

    def test_missing_sections(self):
        score = parse_score("The model declined to answer.")
        self.assertIsNone(score["overall"])
        self.assertEqual(score["strengths"], [])

    def test_prompt_includes_requirements(self):
        prompt = build_prompt("INT. ROOFTOP - NIGHT", ["Sci-fi", "Under 100 pages"])
        self.assertIn("INT. ROOFTOP - NIGHT", prompt)
        self.assertIn("Under 100 pages", prompt)


class ScoreContentTests(SimpleTestCase):
    @override_settings(REGISTRY={"SCORING_API_KEY": ""})
    def test_not_configured_returns_none(self):
        self.assertIsNone(score_content("text"))

    @override_settings(REGISTRY={"SCORING_API_KEY": "k", "SCORING_MODEL": "m", "SCORING_TIMEOUT": 2})
    @mock.patch("registry.scoring.requests.post")
    def test_successful_call(self, post):
        post.return_value.raise_for_status.return_value = None
        post.return_value.json.return_value = {
            "candidates": [{"content": {"parts": [{"text": ANALYSIS}]}}]
        }

        score = score_content("text")

        self.assertEqual(score["overall"], 82)
        self.assertEqual(post.call_args.kwargs["timeout"], 2)

    @override_settings(REGISTRY={"SCORING_API_KEY": "k"})
    @mock.patch("registry.scoring.requests.post", side_effect=requests.ConnectionError("down"))
    def test_failure_returns_none(self, post):
        self.assertIsNone(score_content("text"))

    @override_settings(REGISTRY={"SCORING_API_KEY": "k"})
    @mock.patch("registry.scoring.requests.post")
    def test_unexpected_response_shape_returns_none(self, post):
        post.return_value.raise_for_status.return_value = None
        for body in ({"candidates": None}, {"candidates": ["blocked"]}, ["not", "a", "dict"]):
            post.return_value.json.return_value = body
            self.assertIsNone(score_content("text"), body)
