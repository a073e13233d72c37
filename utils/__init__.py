"""
Utilities package for the Kokbok recipe pipeline.

Contains configuration, logging setup, and small pure helpers shared by services.
"""

from .config import Config
from .logger import setup_logging, get_logger, log_operation
from .durations import parse_duration, format_duration
from .text_similarity import trigram_similarity, text_rank, word_similarity

__all__ = [
    'Config',
    'setup_logging',
    'get_logger',
    'log_operation',
    'parse_duration',
    'format_duration',
    'trigram_similarity',
    'text_rank',
    'word_similarity'
]
