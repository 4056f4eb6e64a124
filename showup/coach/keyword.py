"""KeywordCoach: canned coaching replies keyed on lifestyle keywords.

Placeholder for a generative backend. Smaller, lower-commitment habits get
shorter durations and smaller deposits.
"""

from showup.coach.base import CoachReply
from showup.schemas.onboarding import AIMessage, SuggestedChallenge

KEYWORD_MODEL = "keyword-coach"

WELCOME_MESSAGE = (
    "Welcome! I'm here to help you discover a challenge that will make a real difference in your life.\n\n"
    "The most powerful challenges are often the simple ones - things we know we should do but struggle "
    "to stay consistent with. Things like maintaining a skincare routine, drinking enough water, or going "
    "for a daily walk.\n\n"
    "What's something you've been meaning to do more consistently? Or is there a habit you'd like to build?"
)

CLARIFYING_MESSAGE = (
    "That's interesting! Tell me more about what specifically you'd like to work on.\n\n"
    "Some questions to consider:\n"
    "- Is this something you want to do daily, or a few times a week?\n"
    "- What would success look like for you?\n"
    "- What's been stopping you from doing this consistently before?\n\n"
    "The more I understand your situation, the better I can help you design a challenge that actually "
    "works for you."
)

# (keywords, reply text, suggestion); first match wins
KEYWORD_REPLIES: list[tuple[tuple[str, ...], str, SuggestedChallenge]] = [
    (
        ("skincare", "skin care"),
        "A skincare routine is a perfect challenge! It's exactly the kind of daily habit that compounds over "
        "time - both for your skin and for building discipline.\n\nHere's what I'd suggest for you:",
        SuggestedChallenge(
            title="Daily Skincare Ritual",
            description=(
                "Complete your morning and evening skincare routine every day. This includes cleansing, "
                "moisturizing, and any treatments you use."
            ),
            type="habit",
            suggested_frequency="daily",
            suggested_duration=14,
            suggested_deposit=50,
            reasoning=(
                "Two weeks is enough to start seeing results and building the habit. A $50 deposit is "
                "meaningful without being overwhelming - think of it as investing in yourself."
            ),
        ),
    ),
    (
        ("exercise", "workout", "gym"),
        "Exercise is a great choice! But let's make sure we set you up for success. Many people set ambitious "
        "goals and then struggle to maintain them.\n\nWhat if we started with something achievable?",
        SuggestedChallenge(
            title="Daily Movement Practice",
            description=(
                "Get at least 20 minutes of intentional physical activity each day. This could be a walk, "
                "workout, yoga, or any movement that gets your heart rate up."
            ),
            type="fitness",
            suggested_frequency="daily",
            suggested_duration=7,
            suggested_deposit=25,
            reasoning=(
                "Starting with just 7 days and 20 minutes makes this achievable. Once you complete this, "
                "you can take on a bigger challenge!"
            ),
        ),
    ),
    (
        ("meditat", "mindful", "calm"),
        "Meditation is one of the most impactful habits you can build. Even just 5-10 minutes a day can "
        "transform your mental clarity and stress levels.",
        SuggestedChallenge(
            title="Daily Mindfulness Practice",
            description=(
                "Spend at least 10 minutes each day in meditation or mindfulness practice. Use an app like "
                "Headspace, Calm, or simply sit in quiet reflection."
            ),
            type="wellness",
            suggested_frequency="daily",
            suggested_duration=21,
            suggested_deposit=75,
            reasoning=(
                "21 days is the classic habit-formation period. The $75 deposit shows you're serious about "
                "this investment in your mental wellbeing."
            ),
        ),
    ),
    (
        ("read", "book", "learn"),
        "Reading and learning expand your mind in ways nothing else can. Let's make it a consistent part of "
        "your routine.",
        SuggestedChallenge(
            title="Daily Reading Habit",
            description=(
                "Read for at least 20 minutes every day. This can be books, quality long-form articles, or "
                "educational content related to your interests."
            ),
            type="learning",
            suggested_frequency="daily",
            suggested_duration=14,
            suggested_deposit=50,
            reasoning=(
                "Two weeks of daily reading will help you see how much you can accomplish. 20 minutes is "
                "achievable even on busy days."
            ),
        ),
    ),
    (
        ("water", "hydrat"),
        "Staying hydrated is such a foundational habit - it affects your energy, skin, focus, and overall "
        "health. Let's make it automatic!",
        SuggestedChallenge(
            title="Hydration Hero",
            description=(
                "Drink at least 8 glasses (64oz) of water every day. Track your intake using a water bottle "
                "with measurements or a simple tally."
            ),
            type="wellness",
            suggested_frequency="daily",
            suggested_duration=7,
            suggested_deposit=25,
            reasoning=(
                "A week is enough to feel the difference proper hydration makes. The $25 deposit keeps it "
                "light while still meaningful."
            ),
        ),
    ),
    (
        ("sleep", "bed", "rest"),
        "Better sleep changes everything - your mood, productivity, health, and relationships all improve. "
        "This is a high-impact challenge!",
        SuggestedChallenge(
            title="Consistent Sleep Schedule",
            description=(
                "Go to bed and wake up at the same time every day (within a 30-minute window). Aim for 7-8 "
                "hours of sleep."
            ),
            type="wellness",
            suggested_frequency="daily",
            suggested_duration=14,
            suggested_deposit=75,
            reasoning=(
                "Two weeks allows your body to adjust to the new rhythm. The $75 deposit reflects the "
                "significant impact this will have on your life."
            ),
        ),
    ),
]


class KeywordCoach:
    """Deterministic coach used when no model backend is configured."""

    async def generate(self, transcript: list[AIMessage], latest_user_text: str) -> CoachReply:
        # Opening exchange always gets the welcome, whatever was said
        if len(transcript) <= 2:
            return CoachReply(content=WELCOME_MESSAGE, model=KEYWORD_MODEL)

        text = latest_user_text.lower()
        for keywords, content, suggestion in KEYWORD_REPLIES:
            if any(keyword in text for keyword in keywords):
                return CoachReply(content=content, suggestion=suggestion.model_copy(), model=KEYWORD_MODEL)

        return CoachReply(content=CLARIFYING_MESSAGE, model=KEYWORD_MODEL)
