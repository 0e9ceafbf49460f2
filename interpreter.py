import logging
import os
from typing import Dict, List, Optional, Sequence

from dotenv import load_dotenv
from openai import AsyncOpenAI, BadRequestError

from spread import POSITION_ROLES, DrawnCard

logger = logging.getLogger(__name__)

DEFAULT_TEXT_MODEL = "gpt-5"
DEFAULT_IMAGE_MODEL = "gpt-image-1"
DEFAULT_IMAGE_SIZE = "1024x1536"
DEFAULT_TEMPERATURE = 1.0

SYSTEM_INSTRUCTION = "You are an expert Tarot reader interpreting cards for a user."

READING_PROMPT = """\
You are a mystical and wise Tarot Reader.
The user has asked the following question: "{question}".

The user has drawn the following 3 cards using a "Simple Relationship Spread" \
(1. Current Situation/Self, 2. The Obstacle/Environment, 3. The Outcome/Advice):
{cards}

Please provide a reading in Chinese (中文).
Your tone should be mysterious, empathetic, and insightful.
Structure your response:
1. Brief interpretation of each card in its position.
2. A synthesis of how they relate to the question.
3. A final guiding sentence.

Do not output JSON. Output formatted Markdown.
"""

IMAGE_PROMPT = """\
Draw the Tarot card "{card}".
Style: Classic Rider-Waite-Smith tarot deck style.
Visuals: Vintage hand-drawn line art, woodcut aesthetics, muted watercolor tones \
(antique yellow, faded red/blue).
The image should be a direct illustration of the card's meaning with traditional symbolism.
High quality, detailed, vertical aspect ratio.
No text labels on the card itself if possible.
"""


def describe_cards(cards: Sequence[DrawnCard]) -> str:
    """One line per card, in spread order, naming its role and orientation."""
    lines: List[str] = []
    for idx, card in enumerate(cards, start=1):
        role = POSITION_ROLES[idx - 1] if idx <= len(POSITION_ROLES) else f"Card {idx}"
        orientation = "(Reversed/逆位)" if card.is_reversed else "(Upright/正位)"
        lines.append(f"Position {idx} ({role}): {card.name} {orientation}")
    return "\n".join(lines)


def build_reading_messages(question: str, cards: Sequence[DrawnCard]) -> List[Dict[str, str]]:
    prompt = READING_PROMPT.format(question=question, cards=describe_cards(cards))
    return [
        {"role": "system", "content": SYSTEM_INSTRUCTION},
        {"role": "user", "content": prompt},
    ]


def build_image_prompt(card_name: str) -> str:
    return IMAGE_PROMPT.format(card=card_name)


class TarotInterpreter:
    """Generative text and image collaborator backed by the OpenAI API.

    Model names, image size and temperature come from the environment
    (TAROT_TEXT_MODEL, TAROT_IMAGE_MODEL, TAROT_IMAGE_SIZE, TAROT_TEMPERATURE)
    unless given explicitly. Errors are not handled here; callers decide on
    fallbacks.
    """

    def __init__(
        self,
        *,
        client: Optional[AsyncOpenAI] = None,
        text_model: Optional[str] = None,
        image_model: Optional[str] = None,
        image_size: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> None:
        load_dotenv()
        self.client = client or AsyncOpenAI()
        self.text_model = text_model or os.getenv("TAROT_TEXT_MODEL", DEFAULT_TEXT_MODEL)
        self.image_model = image_model or os.getenv("TAROT_IMAGE_MODEL", DEFAULT_IMAGE_MODEL)
        self.image_size = image_size or os.getenv("TAROT_IMAGE_SIZE", DEFAULT_IMAGE_SIZE)
        if temperature is None:
            temperature = float(os.getenv("TAROT_TEMPERATURE", DEFAULT_TEMPERATURE))
        self.temperature = temperature

    async def generate_reading(self, question: str, cards: Sequence[DrawnCard]) -> str:
        # Avoid passing temperature when at default (1.0)
        params = {
            "model": self.text_model,
            "messages": build_reading_messages(question, cards),
        }
        if self.temperature is not None and self.temperature != 1.0:
            params["temperature"] = self.temperature

        try:
            completion = await self.client.chat.completions.create(**params)
        except BadRequestError as e:
            # Retry without temperature if it's rejected by the model
            if "temperature" in str(e) and "temperature" in params:
                logger.info(f"Model {self.text_model} rejected temperature; retrying without it")
                params.pop("temperature", None)
                completion = await self.client.chat.completions.create(**params)
            else:
                raise

        return (completion.choices[0].message.content or "").strip()

    async def generate_card_image(self, card_name: str) -> Optional[str]:
        """Return the card illustration as a data URI, or None if no image came back."""
        response = await self.client.images.generate(
            model=self.image_model,
            prompt=build_image_prompt(card_name),
            size=self.image_size,
            n=1,
        )
        for item in response.data or []:
            if item.b64_json:
                return f"data:image/png;base64,{item.b64_json}"
        return None
