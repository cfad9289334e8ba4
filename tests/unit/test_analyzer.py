import json

import pytest
from conftest import FIXED_NOW, TZ, make_chain, week_summary_response

from cohort_dashboard.models.domain.dashboard_domain import (
    CohortEvents,
    NewsletterItem,
    NewsletterPayload,
    NewsletterSection,
)
from cohort_dashboard.services.myweek.analyzer import (
    NO_EVENTS_SUMMARY,
    WeeklySynthesizer,
    extract_newsletter_events,
)
from cohort_dashboard.services.myweek.week_window import compute_week_window


@pytest.mark.asyncio
async def test_problem_set_deadline_appears_in_week(cohort_events, organized_newsletter):
    synthesizer = WeeklySynthesizer(make_chain({"gpt-4o-mini": week_summary_response()}), TZ)

    analysis = await synthesizer.analyze(cohort_events, organized_newsletter, FIXED_NOW)

    assert analysis.week_start == "2025-09-14"
    assert analysis.week_end == "2025-09-21"
    for events in (analysis.blue_events, analysis.gold_events):
        problem_set = [e for e in events if e.title == "Problem Set 3"]
        assert len(problem_set) == 1
        assert problem_set[0].date == "2025-09-21"
        assert problem_set[0].type == "newsletter"
        assert problem_set[0].priority == "high"


@pytest.mark.asyncio
async def test_synthesis_is_idempotent(cohort_events, organized_newsletter):
    ai_events = [
        {"date": "2025-09-16", "time": "9:00 AM", "title": "Microeconomics", "type": "academic"},
        {"date": "2025-10-20", "title": "Outside the window", "type": "class"},
    ]
    synthesizer = WeeklySynthesizer(
        make_chain({"gpt-4o-mini": week_summary_response("Busy week.", ai_events)}), TZ
    )

    first = await synthesizer.analyze(cohort_events, organized_newsletter, FIXED_NOW)
    second = await synthesizer.analyze(cohort_events, organized_newsletter, FIXED_NOW)

    assert json.dumps([e.to_json_dict() for e in first.blue_events]) == json.dumps(
        [e.to_json_dict() for e in second.blue_events]
    )
    assert first.blue_summary == second.blue_summary == "Busy week."
    assert [e.title for e in first.blue_events] == ["Microeconomics", "Problem Set 3"]
    assert first.blue_events[0].type == "class"


@pytest.mark.asyncio
async def test_every_event_is_inside_the_window(cohort_events, organized_newsletter):
    ai_events = [
        {"date": "2025-09-13", "title": "Day before", "type": "social"},
        {"date": "2025-09-22", "title": "Day after", "type": "social"},
        {"date": "2025-09-19", "title": "Inside", "type": "social"},
    ]
    synthesizer = WeeklySynthesizer(
        make_chain({"gpt-4o-mini": week_summary_response("ok", ai_events)}), TZ
    )

    analysis = await synthesizer.analyze(cohort_events, organized_newsletter, FIXED_NOW)

    for event in analysis.blue_events + analysis.gold_events:
        assert "2025-09-14" <= event.date <= "2025-09-21"


@pytest.mark.asyncio
async def test_one_cohort_failing_does_not_fail_the_other(cohort_events):
    def respond(system_message, prompt):
        if "for the gold cohort" in prompt:
            raise RuntimeError("provider error")
        return json.dumps({"events": [], "summary": "Blue is fine."})

    synthesizer = WeeklySynthesizer(make_chain({"gpt-4o-mini": respond}), TZ)

    analysis = await synthesizer.analyze(cohort_events, NewsletterPayload(), FIXED_NOW)

    assert analysis.blue_summary == "Blue is fine."
    assert analysis.gold_events == []
    assert analysis.gold_summary == NO_EVENTS_SUMMARY
    assert analysis.ai_meta["gold"].models_tried == ["gpt-4o-mini"]


@pytest.mark.asyncio
async def test_no_candidates_skips_ai_call():
    chain = make_chain({"gpt-4o-mini": week_summary_response()})
    synthesizer = WeeklySynthesizer(chain, TZ)

    analysis = await synthesizer.analyze(CohortEvents(), NewsletterPayload(), FIXED_NOW)

    assert analysis.blue_summary == NO_EVENTS_SUMMARY
    assert analysis.gold_summary == NO_EVENTS_SUMMARY
    assert chain.completion_fn.calls == []


def test_fallback_date_parsing_for_untagged_items():
    window = compute_week_window(FIXED_NOW, TZ)
    newsletter = NewsletterPayload(
        sections=[
            NewsletterSection(
                section_title="Events",
                items=[
                    NewsletterItem(
                        title="Career Fair",
                        html='<p>Join us Friday, Sep 19 <a href="https://example.com/fair">here</a></p>',
                    ),
                    NewsletterItem(title="Later", html="<p>Monday, Oct 6 is far away</p>"),
                ],
            )
        ]
    )

    events = extract_newsletter_events(newsletter, window)

    assert len(events) == 1
    assert events[0].date == "2025-09-19"
    assert events[0].priority == "low"
    assert events[0].url == "https://example.com/fair"


def test_fallback_event_link_skips_anchors_without_href():
    window = compute_week_window(FIXED_NOW, TZ)
    newsletter = NewsletterPayload(
        sections=[
            NewsletterSection(
                section_title="Events",
                items=[
                    NewsletterItem(
                        title="Mixer",
                        html=(
                            '<p><a name="top">Top</a> Saturday, Sep 20 '
                            '<a title="old href=&quot;x&quot;" href="https://example.com/rsvp">RSVP</a></p>'
                        ),
                    ),
                    NewsletterItem(title="Quiet week", html="<p>Friday, Sep 19 study hall</p>"),
                ],
            )
        ]
    )

    events = extract_newsletter_events(newsletter, window)

    assert [(e.title, e.url) for e in events] == [
        ("Mixer", "https://example.com/rsvp"),
        ("Quiet week", None),
    ]


@pytest.mark.asyncio
async def test_malformed_ai_event_is_dropped_without_failing_either_cohort(cohort_events):
    def respond(system_message, prompt):
        if "for the gold cohort" in prompt:
            return json.dumps(
                {
                    "events": [
                        {"date": "2025-09-19", "title": "X", "time": 1800},
                        {"date": "2025-09-18", "title": "Leadership Communication", "type": "class"},
                    ],
                    "summary": "Gold has one class.",
                }
            )
        return json.dumps({"events": [], "summary": "Blue is fine."})

    synthesizer = WeeklySynthesizer(make_chain({"gpt-4o-mini": respond}), TZ)

    analysis = await synthesizer.analyze(cohort_events, NewsletterPayload(), FIXED_NOW)

    assert analysis.blue_summary == "Blue is fine."
    assert analysis.gold_summary == "Gold has one class."
    assert [e.title for e in analysis.gold_events] == ["Leadership Communication"]


@pytest.mark.asyncio
async def test_unexpected_cohort_error_degrades_only_that_cohort(cohort_events, monkeypatch):
    synthesizer = WeeklySynthesizer(
        make_chain({"gpt-4o-mini": lambda s, p: json.dumps({"events": [], "summary": "Fine."})}), TZ
    )
    original = synthesizer.synthesize_cohort

    async def flaky(cohort, *args):
        if cohort == "gold":
            raise KeyError("summary")
        return await original(cohort, *args)

    monkeypatch.setattr(synthesizer, "synthesize_cohort", flaky)

    analysis = await synthesizer.analyze(cohort_events, NewsletterPayload(), FIXED_NOW)

    assert analysis.blue_summary == "Fine."
    assert analysis.gold_summary == NO_EVENTS_SUMMARY
