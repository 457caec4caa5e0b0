"""Convert ChatMessage history into the vendor-neutral request shape."""

from dataclasses import dataclass

from agentchat.models import ChatMessage

_ROLES = ("user", "assistant", "system")


@dataclass
class TextPart:
    text: str


@dataclass
class ImagePart:
    image: str                     # data URI: data:<media type>;base64,<payload>
    media_type: str


@dataclass
class FilePart:
    data: str                      # raw base64 payload
    media_type: str
    filename: str | None = None


ContentPart = TextPart | ImagePart | FilePart


@dataclass
class CoreMessage:
    role: str
    content: str | list[ContentPart]


def to_core_messages(messages: list[ChatMessage]) -> list[CoreMessage]:
    """Filter to user/assistant/system and expand user attachments into parts.

    A user message with attachments becomes an optional leading text part
    (only when the text is non-blank) followed by one part per attachment.
    """
    result: list[CoreMessage] = []
    for msg in messages:
        if msg.role not in _ROLES:
            continue
        if not msg.attachments or msg.role != "user":
            result.append(CoreMessage(role=msg.role, content=msg.content))
            continue

        parts: list[ContentPart] = []
        if msg.content.strip():
            parts.append(TextPart(text=msg.content))
        for att in msg.attachments:
            if not att.base64:
                continue
            if att.media_type.startswith("image/"):
                parts.append(ImagePart(image=f"data:{att.media_type};base64,{att.base64}", media_type=att.media_type))
            else:
                parts.append(FilePart(data=att.base64, media_type=att.media_type, filename=att.name))

        result.append(CoreMessage(role=msg.role, content=parts if parts else msg.content))
    return result


def split_data_uri(uri: str) -> tuple[str, str]:
    """Return (media_type, base64 payload) of a ``data:`` URI."""
    header, _, payload = uri.partition(",")
    media_type = header.removeprefix("data:").split(";", 1)[0]
    return media_type, payload


def message_text(message: CoreMessage) -> str:
    """Plain-text view of a message, ignoring binary parts."""
    if isinstance(message.content, str):
        return message.content
    return "\n".join(p.text for p in message.content if isinstance(p, TextPart))
