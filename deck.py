import re
from dataclasses import dataclass
from typing import List


MAJOR_ARCANA = [
    "The Fool (愚者)",
    "The Magician (魔术师)",
    "The High Priestess (女祭司)",
    "The Empress (皇后)",
    "The Emperor (皇帝)",
    "The Hierophant (教皇)",
    "The Lovers (恋人)",
    "The Chariot (战车)",
    "Strength (力量)",
    "The Hermit (隐士)",
    "Wheel of Fortune (命运之轮)",
    "Justice (正义)",
    "The Hanged Man (倒吊人)",
    "Death (死神)",
    "Temperance (节制)",
    "The Devil (恶魔)",
    "The Tower (高塔)",
    "The Star (星星)",
    "The Moon (月亮)",
    "The Sun (太阳)",
    "Judgement (审判)",
    "The World (世界)",
]

SUITS = ["Wands (权杖)", "Cups (圣杯)", "Swords (宝剑)", "Pentacles (星币)"]
RANKS = [
    "Ace",
    "Two",
    "Three",
    "Four",
    "Five",
    "Six",
    "Seven",
    "Eight",
    "Nine",
    "Ten",
    "Page",
    "Knight",
    "Queen",
    "King",
]

DEFAULT_THEME = "star"

_ROMAN_NUMERALS = [
    (1000, "M"),
    (900, "CM"),
    (500, "D"),
    (400, "CD"),
    (100, "C"),
    (90, "XC"),
    (50, "L"),
    (40, "XL"),
    (10, "X"),
    (9, "IX"),
    (5, "V"),
    (4, "IV"),
    (1, "I"),
]

# Checked in order; first keyword found in the card name wins.
_MAJOR_THEMES = [
    ("Sun", "sun"),
    ("Moon", "moon"),
    ("Star", "star"),
    ("Devil", "flame"),
    ("Tower", "flame"),
    ("Fool", "crown"),
    ("World", "crown"),
]

_PAREN_RE = re.compile(r"\((.*?)\)")


@dataclass(frozen=True)
class CardMetadata:
    is_major: bool
    number: str
    suit: str
    theme: str
    display_name: str
    native_name: str


def create_standard_tarot_deck() -> List[str]:
    """Return the 78-card deck, majors first, then minors suit by suit."""
    minors = [f"{rank} of {suit}" for suit in SUITS for rank in RANKS]
    deck = MAJOR_ARCANA + minors
    assert len(deck) == 78, "Deck should contain exactly 78 cards"
    return deck


def to_roman(num: int) -> str:
    if num == 0:
        return "0"
    roman = ""
    for value, symbol in _ROMAN_NUMERALS:
        while num >= value:
            roman += symbol
            num -= value
    return roman


def display_name(name: str) -> str:
    """Card name without its parenthetical translation or leading "The "."""
    base = name.split("(")[0].strip()
    if base.startswith("The "):
        base = base[len("The "):]
    return base


def native_name(name: str) -> str:
    match = _PAREN_RE.search(name)
    return match.group(1) if match else ""


def metadata_of(name: str) -> CardMetadata:
    """Derive display metadata for a card name.

    Total over any string: names outside the deck come back as a suit-less
    minor with the default theme.
    """
    if name in MAJOR_ARCANA:
        theme = "shield"
        for keyword, tag in _MAJOR_THEMES:
            if keyword in name:
                theme = tag
                break
        return CardMetadata(
            is_major=True,
            number=to_roman(MAJOR_ARCANA.index(name)),
            suit="Major",
            theme=theme,
            display_name=display_name(name),
            native_name=native_name(name),
        )

    suit = ""
    theme = DEFAULT_THEME
    for full_suit in SUITS:
        suit_name = full_suit.split(" ")[0]
        if suit_name in name:
            suit = suit_name
            theme = suit_name.lower()
            break

    return CardMetadata(
        is_major=False,
        number="",
        suit=suit,
        theme=theme,
        display_name=display_name(name),
        native_name=native_name(name),
    )
