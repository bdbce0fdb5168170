from collections.abc import Sequence

from gateway.models.requests import ChatMessage


def assemble_messages(
    messages: Sequence[ChatMessage],
    override_prompt: str | None,
    default_prompt: str,
) -> list[dict[str, object]]:
    """Drop caller system messages and put the operator prompt first."""
    if override_prompt and override_prompt.strip():
        system_prompt = override_prompt
    else:
        system_prompt = default_prompt
    assembled: list[dict[str, object]] = [{"role": "system", "content": system_prompt}]
    assembled.extend(
        {"role": message.role, "content": message.content}
        for message in messages
        if message.role != "system"
    )
    return assembled
