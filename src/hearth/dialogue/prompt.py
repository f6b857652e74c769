"""Prompt assembly for the dialogue orchestrator."""

import random
from typing import Protocol

from ..memory import CompressedContext, Identity, Turn
from ..provider import Message

PERSONA_PROMPT = """You are {assistant_name}, a warm, intuitive companion who remembers the people you talk with.
You address {addressed} with warmth and calm intimacy.

Write for being read aloud:
- Natural, human cadence; vary sentence length.
- No therapy cliches or canned comfort arcs.
- Prefer concrete nouns and sensory detail over abstractions.
- Keep 2-6 sentences.
- Ask at most one question, and only if it truly serves momentum. It's fine to ask none.
{name_rule}
{facts_line}"""

KNOWN_NAME_RULE = "- You already know their name is {name}. Never ask for their name again."
UNKNOWN_NAME_RULE = "- You don't know their name yet. Don't interrogate; it's fine to never ask."

TONES = [
    "curious and open-ended",
    "poetic and sensory",
    "mischievous and light",
    "calm midnight whisper",
    "oracular and elliptical",
    "playful mentor",
    "tender-direct and grounded",
]
MOVES = [
    "offer one surprising image",
    "ask one precise question",
    "use a short fragment as a hinge",
    "mirror a single user word, then pivot",
    "present two distinct paths to choose from",
    "metaphor first, concrete step second",
]
CADENCES = ["staccato lines", "long flowing lines", "mixed cadence with pauses"]

NEW_VISITOR_GREETINGS = [
    "Welcome in. I'm glad you found your way here. What should I call you?",
    "You arrived like a spark in the dark. Tell me your name, if you like.",
    "Welcome into the hush. I'm listening whenever you're ready.",
    "Come closer. Start with your name and I'll remember it.",
]
RETURNING_INTROS = [
    "Welcome back, {name}.",
    "{name}, you're here.",
    "There you are, {name}.",
    "Back again, {name}? I've missed your signal.",
]
RETURNING_RECALLS = [
    "Last time you told me about {recall}.",
    "I still remember {recall}.",
    "I've been holding {recall} for you.",
]
RETURNING_THREADS = [
    "Shall we pick up where we left off?",
    "Let's continue the thread we began.",
    "I kept a seat warm in the quiet for you.",
]

FALLBACK_REPLY = "I'm here. Something slipped on my side; try me again in a breath."
NUDGE_FALLBACK = "Still here whenever you want to pick things back up."

ANTI_REPEAT_LINES = 5
ANTI_REPEAT_CHARS = 120


class StyleHintProvider(Protocol):
    """Source of per-turn style seeds and greeting choices."""

    def hint(self) -> str:
        """Return a style directive for this turn."""
        ...

    def choose(self, options: list[str]) -> str:
        """Pick one of several phrasings."""
        ...


class RandomStyleHints:
    """Style hints drawn at random; pass a seed for repeatable output."""

    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(seed)

    def hint(self) -> str:
        tone = self._rng.choice(TONES)
        moves = self._rng.sample(MOVES, 2)
        cadence = self._rng.choice(CADENCES)
        return (
            "Style seeds for this turn:\n"
            f"- Tone: {tone}\n"
            f"- Moves to consider: {' / '.join(moves)}\n"
            f"- Cadence: {cadence}"
        )

    def choose(self, options: list[str]) -> str:
        return self._rng.choice(options)


class FixedStyleHint:
    """Always the same hint and always the first option."""

    def __init__(self, text: str = "Style: plain and warm.") -> None:
        self.text = text

    def hint(self) -> str:
        return self.text

    def choose(self, options: list[str]) -> str:
        return options[0]


def build_persona_prompt(assistant_name: str, identity: Identity, facts: list[str]) -> str:
    """Build the persona system prompt with the user's name and facts."""
    name = identity.name
    return PERSONA_PROMPT.format(
        assistant_name=assistant_name,
        addressed=name or "your friend",
        name_rule=KNOWN_NAME_RULE.format(name=name) if name else UNKNOWN_NAME_RULE,
        facts_line=f"Known facts: {'; '.join(facts)}." if facts else "Known facts: none.",
    ).strip()


def anti_repeat_note(thread: list[Turn]) -> Message | None:
    """System note listing recent assistant lines to avoid echoing."""
    lines = [t.text for t in thread if t.role == "assistant" and t.text][-ANTI_REPEAT_LINES:]
    if not lines:
        return None
    quoted = " / ".join(f'"{line[:ANTI_REPEAT_CHARS]}"' for line in lines)
    return {
        "role": "system",
        "content": f"Recent assistant lines (avoid repeating phrases): {quoted}",
    }


def build_messages(
    *,
    persona: str,
    style_hint: str,
    context: CompressedContext,
    instruction: str,
    timezone: str | None = None,
) -> list[Message]:
    """Assemble the provider input for one turn.

    Order: persona, style seeds, anti-repetition note, summary line,
    recent turns, then the instruction for this turn as the user message.
    """
    messages: list[Message] = [
        {"role": "system", "content": persona},
        {"role": "system", "content": style_hint},
    ]

    note = anti_repeat_note(context.recent)
    if note:
        messages.append(note)

    summary = context.summary_message()
    if summary:
        messages.append(summary)

    messages.extend({"role": t.role, "content": t.text} for t in context.recent)

    content = instruction
    if timezone:
        content += f" (User timezone: {timezone})"
    messages.append({"role": "user", "content": content})
    return messages


def say_instruction(message: str) -> str:
    return (
        f'Respond to: "{message}". '
        "Speak-friendly: short, human sentences; vary cadence. "
        "Ask at most one question; it's fine to ask none."
    )


def init_instruction(identity: Identity) -> str:
    if identity.name:
        recall = f" Last time they talked about {identity.last_topic}." if identity.last_topic else ""
        return (
            f"{identity.name} has just returned.{recall} "
            "Open with one or two sentences welcoming them back. Do not ask for their name."
        )
    return (
        "A new visitor has just arrived. Open with one or two welcoming sentences. "
        "You may gently invite their name once, without interrogating."
    )


def nudge_instruction(identity: Identity) -> str:
    who = identity.name or "the user"
    return (
        f"{who} has gone quiet for a while. Send one short, gentle check-in line "
        "that invites them back without pressure. No question marks stacked, no guilt."
    )


def learn_identity_instruction(name: str) -> str:
    return f"The user just told you their name is {name}. Acknowledge it warmly in one sentence."


def add_fact_instruction(fact: str) -> str:
    return f'The user asked you to remember: "{fact}". Confirm briefly in one sentence.'


def greeting(identity: Identity, hints: StyleHintProvider) -> str:
    """Hard-coded opening used when the provider can't produce one."""
    if not identity.name:
        return hints.choose(NEW_VISITOR_GREETINGS)
    parts = [hints.choose(RETURNING_INTROS).format(name=identity.name)]
    if identity.last_topic:
        parts.append(hints.choose(RETURNING_RECALLS).format(recall=identity.last_topic))
    parts.append(hints.choose(RETURNING_THREADS))
    return " ".join(parts)


def learn_identity_ack(name: str) -> str:
    return f"Lovely to meet you, {name}. I'll remember."


def add_fact_ack(fact: str) -> str:
    return f"Noted. I'll keep that close: {fact}"
