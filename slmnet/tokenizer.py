"""
Character Tokenizer

Maps every distinct character of a training text to a small integer id. The
mapping is fixed once the vocabulary is built: characters that were not seen
are dropped on encode, and ids outside the vocabulary are dropped on decode.
For any text made only of known characters, decode(encode(text)) == text.

Classes:
    CharacterTokenizer: Character-level tokenizer with encode, decode, save, load
"""

import json
from typing import Dict, Iterable, List


class CharacterTokenizer:
    """
    Character-level tokenizer.

    Attributes:
        vocabulary: Sorted list of characters; a character's id is its index
        char_to_id: Dict mapping characters to ids
        id_to_char: Dict mapping ids to characters

    Example:
        >>> tokenizer = CharacterTokenizer("hello world")
        >>> tokenizer.encode("hold")
        [3, 5, 4, 1]
        >>> tokenizer.decode([3, 5, 4, 1])
        'hold'
    """

    def __init__(self, text: str = ""):
        """
        Build the vocabulary from every distinct character of text.

        Args:
            text: Training text
        """
        self.vocabulary: List[str] = sorted(set(text))
        self._build_lookup_tables()

    def _build_lookup_tables(self) -> None:
        self.char_to_id: Dict[str, int] = {
            char: index for index, char in enumerate(self.vocabulary)
        }
        self.id_to_char: Dict[int, str] = dict(enumerate(self.vocabulary))

    @property
    def vocab_size(self) -> int:
        """Return the size of the vocabulary."""
        return len(self.vocabulary)

    def encode(self, text: str) -> List[int]:
        """Convert text to token ids, silently skipping unknown characters."""
        return [self.char_to_id[char] for char in text if char in self.char_to_id]

    def decode(self, token_ids: Iterable[int]) -> str:
        """Convert token ids back to text, silently skipping unknown ids."""
        return "".join(
            self.id_to_char[int(token_id)]
            for token_id in token_ids
            if int(token_id) in self.id_to_char
        )

    def save(self, path: str) -> None:
        """
        Save the vocabulary to a JSON file.

        Args:
            path: Path to save the tokenizer
        """
        with open(path, "w", encoding="utf-8") as f:
            json.dump({"vocabulary": self.vocabulary}, f, ensure_ascii=False, indent=2)

    @classmethod
    def load(cls, path: str) -> "CharacterTokenizer":
        """
        Load a tokenizer saved with save().

        Args:
            path: Path to the saved tokenizer

        Returns:
            Tokenizer with the saved vocabulary, ids unchanged
        """
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return cls.from_vocabulary(data["vocabulary"])

    @classmethod
    def from_vocabulary(cls, vocabulary: Iterable[str]) -> "CharacterTokenizer":
        """Rebuild a tokenizer from a vocabulary list, keeping its id order."""
        tokenizer = cls()
        tokenizer.vocabulary = list(vocabulary)
        tokenizer._build_lookup_tables()
        return tokenizer
