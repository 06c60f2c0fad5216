"""
Prompt construction and completion metadata.

User-supplied text is sanitized before it reaches the provider. Each
variant gets its own tone/length style so the N outputs differ.
"""

import re
from dataclasses import dataclass
from typing import List

from .models import ContextTags, GenerationRequest, VariantMetadata

MAX_SANITIZED_LENGTH = 5000

_INJECTION_PATTERNS = [
    re.compile(r"ignore\s+(previous|above|all|prior)\s+instructions?", re.IGNORECASE),
    re.compile(r"disregard\s+(previous|above|all|prior)\s+instructions?", re.IGNORECASE),
    re.compile(r"forget\s+(previous|above|all|prior)\s+instructions?", re.IGNORECASE),
    re.compile(r"new\s+instructions?:", re.IGNORECASE),
    re.compile(r"system\s*:", re.IGNORECASE),
    re.compile(r"assistant\s*:", re.IGNORECASE),
    re.compile(r"\[SYSTEM\]", re.IGNORECASE),
    re.compile(r"\[INST\]", re.IGNORECASE),
    re.compile(r"<\|im_start\|>", re.IGNORECASE),
    re.compile(r"<\|im_end\|>", re.IGNORECASE),
]


@dataclass(frozen=True)
class VariantStyle:
    tone: str
    length: str


VARIANT_STYLES: List[VariantStyle] = [
    VariantStyle(tone="professional", length="standard"),
    VariantStyle(tone="casual", length="brief"),
    VariantStyle(tone="formal", length="detailed"),
]


def variant_style(index: int) -> VariantStyle:
    """Style for a variant index, cycling through VARIANT_STYLES."""
    return VARIANT_STYLES[index % len(VARIANT_STYLES)]


def sanitize_user_input(text: str) -> str:
    """Strip prompt-injection patterns and bound the length of user text."""
    if not text:
        return ""
    sanitized = text
    for pattern in _INJECTION_PATTERNS:
        sanitized = pattern.sub("", sanitized)
    sanitized = re.sub(r"\n{4,}", "\n\n\n", sanitized)
    return sanitized.strip()[:MAX_SANITIZED_LENGTH]


_CONTEXT_DESCRIPTIONS = {
    "urgency": {
        "immediate": "This requires an urgent/immediate response",
        "standard": "This is a standard business communication",
        "non_urgent": "This is non-urgent and can be addressed thoughtfully",
    },
    "message_type": {
        "update": "Client is requesting a project status update",
        "question": "Client has a question that needs answering",
        "concern": "Client has raised a concern or issue",
        "deliverable": "Related to work delivery or completion",
        "payment": "Payment or billing related discussion",
        "scope_change": "Discussion about project scope changes",
    },
    "relationship_stage": {
        "new": "New client relationship - first time working together",
        "established": "Established working relationship",
        "difficult": "Challenging client relationship that needs careful handling",
        "long_term": "Long-term client with years of collaboration",
    },
    "project_phase": {
        "discovery": "Project is in discovery/planning phase",
        "active": "Project is actively in progress",
        "completion": "Project is nearing completion",
        "maintenance": "Project is in maintenance/support phase",
        "on_hold": "Project is currently on hold",
    },
}


def describe_context(context: ContextTags) -> str:
    lines = []
    if context.client_name:
        lines.append(f"- Client Name: {sanitize_user_input(context.client_name)}")
    if context.user_name:
        lines.append(f"- Your Name: {sanitize_user_input(context.user_name)}")
    lines.append(f"- Urgency: {_CONTEXT_DESCRIPTIONS['urgency'][context.urgency.value]}")
    lines.append(
        f"- Message Type: {_CONTEXT_DESCRIPTIONS['message_type'][context.message_type.value]}"
    )
    lines.append(
        "- Relationship Stage: "
        f"{_CONTEXT_DESCRIPTIONS['relationship_stage'][context.relationship_stage.value]}"
    )
    lines.append(
        f"- Project Phase: {_CONTEXT_DESCRIPTIONS['project_phase'][context.project_phase.value]}"
    )
    if context.custom_notes:
        lines.append(f"- Additional Context: {sanitize_user_input(context.custom_notes)}")
    return "\n".join(lines)


SYSTEM_PROMPT = (
    "You are an expert freelancer communication assistant. Generate professional "
    "email/message responses that help freelancers communicate effectively with "
    "their clients.\n\n"
    "Guidelines:\n"
    "- Be professional but adjust formality based on context\n"
    "- Be helpful, clear, and solution-oriented\n"
    "- Consider the client relationship stage and project phase\n"
    "- Handle urgent vs. non-urgent communications appropriately\n"
    "- Always maintain professional boundaries"
)


def build_prompt(request: GenerationRequest) -> str:
    """Shared user prompt for every variant of a request."""
    context = request.context
    client_name = sanitize_user_input(context.client_name or "")
    user_name = sanitize_user_input(context.user_name or "")

    if client_name:
        greeting = (
            f'- Start with "Hello {client_name}," or "Hi {client_name}," '
            "depending on the tone"
        )
    else:
        greeting = "- Use an appropriate greeting"
    if user_name:
        signoff = f'- End with an appropriate sign-off using the name "{user_name}"'
    else:
        signoff = "- End with an appropriate professional sign-off"

    return "\n".join([
        "Please generate a professional response for the following client message:",
        "",
        "CLIENT MESSAGE:",
        f'"{sanitize_user_input(request.message)}"',
        "",
        "CONTEXT:",
        describe_context(context),
        "",
        "Requirements:",
        "- Be professional and appropriate for the context",
        greeting,
        signoff,
        "- Be clear, concise, and solution-oriented",
    ])


def build_variant_prompt(prompt: str, index: int) -> str:
    style = variant_style(index)
    return (
        f"{prompt}\n\nFor this response, aim for a {style.tone} tone "
        f"with {style.length} length."
    )


_GREETING = re.compile(r"^(Hello|Hi|Dear)", re.IGNORECASE)
_SIGNOFF = re.compile(r"(Best|Regards|Thanks|Sincerely)", re.IGNORECASE)


def extract_metadata(content: str, index: int) -> VariantMetadata:
    """Score a finished variant by structure and length.

    Confidence starts at 0.7 and is capped at 0.95.
    """
    style = variant_style(index)
    word_count = len(content.split())
    has_greeting = bool(_GREETING.match(content.strip()))
    has_signoff = bool(_SIGNOFF.search(content))

    confidence = 0.7
    if has_greeting:
        confidence += 0.1
    if has_signoff:
        confidence += 0.1
    if word_count > 20:
        confidence += 0.05
    if word_count > 50:
        confidence += 0.05

    reasoning = f"Generated {style.length} response with {style.tone} tone."
    if has_greeting and has_signoff:
        reasoning += " Includes proper greeting and sign-off."

    return VariantMetadata(
        tone=style.tone,
        length=style.length,
        confidence=round(min(confidence, 0.95), 2),
        reasoning=reasoning,
    )
