"""Prompt construction for weekly outing plans."""

from planner.schemas.job import PlanInput
from planner.services.generation_client import GenerationRequest

MAX_EVENTS = 5
TRAVEL_RADIUS_MINUTES = 60

SYSTEM_INSTRUCTIONS = (
    "Output only the HTML document, with no text before or after it. "
    "Do not invent or paraphrase facts; quote official sources verbatim."
)

PLAN_PROMPT = """You are an agent that researches and formats family outing plans in a single pass.
Use the web_search_preview tool and consider only current official information for
events within the window below. Select events that match the conditions and produce
**a single HTML document**. Prefer wording stated on official sites.

# Conditions
- Origin: {home_address}
- Travel: within {radius} minutes by car or public transport
- Audience: families with small children, enough for a full day
- Window: {date_range}
- Count: **at most {max_events} events**
- Priority: **limited-time** events and activities
- Interests: {interests}

# Collection rules
- Search with web_search_preview. Exclude events announced only on social media;
  prefer official municipal, venue and organizer URLs.
- Never create or guess facts, URLs or dates. Leave out anything not stated on the source.
- Drop duplicate URLs for the same event. Use real URLs only.
- List every referenced URL in the reference section.

# Fields per event
- Title (official name, verbatim)
- Dates (as written)
- Venue name
- Address (if missing: "Address not listed by the organizer")
- Official URL (clickable link)
- Facilities for children (verbatim bullet points, only if listed)

# HTML requirements (single document, nothing else)
- Load the Tailwind CDN; wrap content in container mx-auto max-w-3xl p-6.
- Page header shows "Window: {date_range}" and "Origin: {home_address}".
- One card per event (rounded-2xl shadow p-6 mb-6) with a font-semibold heading.
- Links use <a href="..." target="_blank" rel="noopener noreferrer">...</a>.
- At most one <img> per event, only for image URLs published officially.
- Text uses whitespace-pre-line.
- End the page with a "References" list of every referenced URL in <ul><li>...</li></ul>, deduplicated.
"""


def build_generation_request(plan_input: PlanInput) -> GenerationRequest:
    """Build the generation request for a job input. Same input, same request."""
    prompt = PLAN_PROMPT.format(
        home_address=plan_input.home_address,
        radius=TRAVEL_RADIUS_MINUTES,
        date_range=plan_input.date_range,
        max_events=MAX_EVENTS,
        interests=", ".join(plan_input.interests) or "none specified",
    )
    return GenerationRequest(
        instructions=SYSTEM_INSTRUCTIONS,
        prompt=prompt,
        tools=[{"type": "web_search_preview"}],
    )
