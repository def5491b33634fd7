# catalog/__init__.py
# 原型目录、访谈题本与评估分类体系 / Archetype catalog, question script & readiness taxonomies

from meridian.catalog.loader import (
    Archetype,
    ArchetypeCatalog,
    CatalogValidationError,
    Dimension,
    Pillar,
    Question,
    QuestionScript,
    ReadinessTaxonomy,
    available_taxonomies,
    build_archetype_catalog,
    build_question_script,
    build_taxonomy,
    default_archetypes,
    default_taxonomy,
    load_archetypes,
    load_taxonomy,
)

__all__ = [
    "Archetype",
    "ArchetypeCatalog",
    "CatalogValidationError",
    "Dimension",
    "Pillar",
    "Question",
    "QuestionScript",
    "ReadinessTaxonomy",
    "available_taxonomies",
    "build_archetype_catalog",
    "build_question_script",
    "build_taxonomy",
    "default_archetypes",
    "default_taxonomy",
    "load_archetypes",
    "load_taxonomy",
]
