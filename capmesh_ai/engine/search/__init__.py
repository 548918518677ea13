"""Hybrid semantic + structural search."""

from .hybrid import (
    STRUCTURAL_FALLBACK,
    HybridSearch,
    blend_alpha,
    related_nodes,
    structural_relatedness,
    two_hop_neighbourhood,
)

__all__ = [
    "STRUCTURAL_FALLBACK",
    "HybridSearch",
    "blend_alpha",
    "related_nodes",
    "structural_relatedness",
    "two_hop_neighbourhood",
]
