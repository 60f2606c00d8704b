from .text import count_words, split_paragraphs, tail_text

__all__ = ["count_words", "split_paragraphs", "tail_text"]
