# -*- coding: utf-8 -*-
"""
Repositories
데이터 접근 계층
"""
from .base_repository import BaseRepository
from .attribute_repository import AttributeRepository
from .assignment_repository import AssignmentRepository
from .evolution_repository import EvolutionRepository

__all__ = [
    "BaseRepository",
    "AttributeRepository",
    "AssignmentRepository",
    "EvolutionRepository",
]
