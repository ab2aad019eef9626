"""
Posterior sampling of character histories.

Joint ancestral state draws for both engines and stochastic character
maps (SIMMAP) under the SSE process.
"""

from .ancestral import (
    CharacterHistory,
    draw_ancestral_states,
    draw_pruning_ancestral_states,
    draw_stochastic_character_map,
    format_simmap,
)

__all__ = [
    "CharacterHistory",
    "draw_ancestral_states",
    "draw_pruning_ancestral_states",
    "draw_stochastic_character_map",
    "format_simmap",
]
