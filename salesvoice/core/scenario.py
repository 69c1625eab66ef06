"""
Scenario configuration and the turn script builder.

A scenario describes the buyer persona the salesperson pitches to. It is
materialized once per session into the instruction turn (the persona's role
and rules) and the seed human turn that opens the conversation.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import ConfigurationError

# Rule set shared by every persona
QUESTIONS_PER_SESSION = 5
FEEDBACK_CRITERIA = ("persuasiveness", "clarity", "relevance", "suggestions to improve")


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


_TONE_BY_DIFFICULTY = {
    Difficulty.EASY: "warm, curious, and open to being convinced",
    Difficulty.MEDIUM: "elegant, smart, confident, and slightly skeptical",
    Difficulty.HARD: "demanding, impatient, and highly skeptical of every claim",
}


def _strip_required(value: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError("must not be empty")
    return value


class ConsumerPersona(BaseModel):
    """An individual shopping for themselves."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    buyer_type: Literal["consumer"] = "consumer"
    age: int = Field(ge=16, le=110)
    gender: Optional[str] = None
    occupation: Optional[str] = None
    lifestyle: Optional[str] = None
    traits: Tuple[str, ...] = ()

    def describe(self) -> str:
        who = " ".join(p for p in (f"{self.age}-year-old", self.gender or "person") if p)
        parts = [f"a {', '.join(self.traits)} {who}" if self.traits else f"a {who}"]
        if self.occupation:
            parts.append(f"working as {self.occupation}")
        if self.lifestyle:
            parts.append(f"with a {self.lifestyle} lifestyle")
        return " ".join(parts)


class BusinessPersona(BaseModel):
    """A professional evaluating a purchase on behalf of an organization."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    buyer_type: Literal["business"] = "business"
    job_title: str
    company_name: Optional[str] = None
    company_size: Optional[str] = None
    priorities: Tuple[str, ...] = ()
    traits: Tuple[str, ...] = ()

    @field_validator("job_title")
    @classmethod
    def check_title(cls, value: str) -> str:
        return _strip_required(value)

    def describe(self) -> str:
        lead = f"a {', '.join(self.traits)} {self.job_title}" if self.traits else f"a {self.job_title}"
        company = self.company_name or "a company"
        if self.company_size:
            company = f"{company} ({self.company_size})"
        text = f"{lead} at {company}"
        if self.priorities:
            text += f" whose priorities are {', '.join(self.priorities)}"
        return text


Persona = Annotated[Union[ConsumerPersona, BusinessPersona], Field(discriminator="buyer_type")]


class ScenarioConfig(BaseModel):
    """Immutable description of the persona to simulate."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    persona: Persona
    product: str
    industry: str
    difficulty: Difficulty = Difficulty.MEDIUM
    focus_topics: Tuple[str, ...] = ()

    @field_validator("product", "industry")
    @classmethod
    def check_text(cls, value: str) -> str:
        return _strip_required(value)


def default_scenario() -> ScenarioConfig:
    """The built-in persona used when a client never sends start_session."""
    return ScenarioConfig(
        persona=ConsumerPersona(
            age=30,
            gender="woman",
            lifestyle="wealthy, style-conscious",
            traits=("discerning",),
        ),
        product="high-end wooden furniture",
        industry="luxury home furnishings",
        difficulty=Difficulty.MEDIUM,
        focus_topics=("design", "materials", "uniqueness", "brand reputation", "service"),
    )


def parse_scenario(config: Union[ScenarioConfig, Mapping[str, Any]]) -> ScenarioConfig:
    """Validate a scenario mapping, raising ConfigurationError when malformed."""
    if isinstance(config, ScenarioConfig):
        return config
    if not isinstance(config, Mapping):
        raise ConfigurationError(f"Scenario configuration must be a mapping, got {type(config).__name__}")
    try:
        return ScenarioConfig.model_validate(dict(config))
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'scenario'}: {err['msg']}" for err in exc.errors()
        )
        raise ConfigurationError(f"Invalid scenario configuration: {problems}") from exc


def _role_line(scenario: ScenarioConfig) -> str:
    persona = scenario.persona
    if isinstance(persona, BusinessPersona):
        return (
            f"You are role-playing as {persona.describe()}, evaluating {scenario.product} "
            f"for your business in the {scenario.industry} industry."
        )
    return (
        f"You are role-playing as {persona.describe()}, shopping for {scenario.product} "
        f"in the {scenario.industry} market."
    )


def build_script(config: Union[ScenarioConfig, Mapping[str, Any]]) -> Tuple[str, str]:
    """Return (instruction_text, seed_human_text) for a scenario."""
    scenario = parse_scenario(config)
    buyer = "business buyer" if scenario.persona.buyer_type == "business" else "consumer"
    tone = _TONE_BY_DIFFICULTY[scenario.difficulty]
    topics = ", ".join(scenario.focus_topics) if scenario.focus_topics else "needs, value, quality, trust, service"

    lines: List[str] = [
        _role_line(scenario),
        "You are speaking to a salesperson (the user), and your job is to EVALUATE their pitch.",
        "",
        "YOUR ROLE:",
        f"- You are the BUYER ({buyer}). The user is the SELLER.",
        "- You do NOT try to sell. You ask questions about what they are selling.",
        "- Ask exactly ONE question per message.",
        f"- Ask a TOTAL of {QUESTIONS_PER_SESSION} questions, each on a different topic ({topics}).",
        f"- Your tone is {tone}.",
        f"- Difficulty: {scenario.difficulty.value}.",
        "- Your questions should be easy to understand and directly related to what the user just said.",
        "- Do NOT answer questions. Only ask. Then evaluate.",
        "",
        f"AFTER ASKING {QUESTIONS_PER_SESSION} QUESTIONS:",
        f"- Once the user has responded to all {QUESTIONS_PER_SESSION}, SWITCH OUT OF CHARACTER.",
        "- Then provide detailed feedback like this:",
        "",
        f"**Feedback:** [Your honest, concise critique, covering {', '.join(FEEDBACK_CRITERIA)}.]",
    ]
    seed = f"Start by trying to sell some {scenario.product}"
    return "\n".join(lines), seed
