import asyncio
from datetime import date

from tests.fakes import FakeIntentProvider
from travelbot.services.intent_extraction import IntentExtractionProvider
from travelbot.services.query_analyzer import QueryAnalyzer, build_analysis_prompt
from travelbot.services.query_normalizer import default_analysis

TODAY = date(2026, 10, 19)


class _FailingProvider(IntentExtractionProvider):
    async def complete(self, prompt):
        raise TimeoutError("model took too long")


def test_prompt_carries_date_and_message():
    prompt = build_analysis_prompt("Beach trip in December", TODAY)
    assert "Current date: 2026-10-19" in prompt
    assert '"Beach trip in December"' in prompt
    assert '"query_intent"' in prompt


def test_fenced_json_is_normalized(beach_payload):
    provider = FakeIntentProvider(beach_payload)
    analysis = asyncio.run(QueryAnalyzer(provider).analyze("beach in december", TODAY))
    assert analysis.destination_preferences.destination_type == ["beach"]
    assert analysis.traveler_info.group_size == 2
    assert analysis.travel_dates.duration_days == 10
    assert analysis.budget.currency == "USD"
    assert len(provider.prompts) == 1


def test_non_json_reply_gives_defaults():
    provider = FakeIntentProvider("Sorry, I can't help with that.")
    analysis = asyncio.run(QueryAnalyzer(provider).analyze("hello", TODAY))
    assert analysis == default_analysis()


def test_provider_failure_gives_defaults():
    analysis = asyncio.run(QueryAnalyzer(_FailingProvider()).analyze("hello", TODAY))
    assert analysis == default_analysis()


def test_missing_provider_gives_defaults():
    analysis = asyncio.run(QueryAnalyzer(None).analyze("hello", TODAY))
    assert analysis == default_analysis()
