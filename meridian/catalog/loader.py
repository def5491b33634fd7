# loader.py
# =============================================================================
# 原型目录、访谈题本与评估分类体系的加载与校验。
#
# 三类配置均为进程级只读数据：
#   - ArchetypeCatalog: 原型列表（声明顺序即并列时的裁决顺序）
#   - QuestionScript:   带版本号的题本 + 计分权重（权重随题本版本走）
#   - ReadinessTaxonomy: 支柱 / 维度 / 角色权重 / 成熟度等级
#
# 默认配置随包发布（meridian/catalog/data/），也可以传入自定义 YAML 路径。
# 校验失败抛出 CatalogValidationError(code, message)。
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml

logger = logging.getLogger(__name__)

_DATA_DIR = Path(__file__).parent / "data"
_TAXONOMY_DIR = _DATA_DIR / "taxonomies"

# -----------------------------------------------------------------------------
# 错误码
# -----------------------------------------------------------------------------
CATALOG_NOT_FOUND = "CATALOG_NOT_FOUND"
CATALOG_SCHEMA_INVALID = "CATALOG_SCHEMA_INVALID"

SELECTION_TYPES = ("single", "ranked")
# 题组计分上下文：default / authentic 决定原型，drain 记录当前消耗信号
SCORING_CONTEXTS = ("default", "authentic", "drain")
AGGREGATIONS = ("mean", "min", "median")


class CatalogValidationError(Exception):
    """配置校验错误: 携带错误码与诊断信息。"""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}")


# =============================================================================
# 原型目录
# =============================================================================


@dataclass(frozen=True)
class Archetype:
    key: str
    name: str
    letter: str
    core_traits: Tuple[str, ...]
    under_pressure: str
    when_grounded: str
    overuse_signals: Tuple[str, ...]


@dataclass(frozen=True)
class ArchetypeCatalog:
    """原型目录。archetypes 的顺序即 arg-max 并列时的优先顺序。"""

    name: str
    archetypes: Tuple[Archetype, ...]

    def keys(self) -> List[str]:
        return [a.key for a in self.archetypes]

    def get(self, key: str) -> Archetype:
        for archetype in self.archetypes:
            if archetype.key == key:
                return archetype
        raise KeyError(f"未知原型: '{key}'")

    def zero_vector(self) -> Dict[str, int]:
        return {a.key: 0 for a in self.archetypes}


# =============================================================================
# 题本
# =============================================================================


@dataclass(frozen=True)
class QuestionOption:
    letter: str
    archetype: str
    text: str


@dataclass(frozen=True)
class Question:
    id: str
    section: str
    stem: str
    selection_type: str  # single / ranked
    options: Tuple[QuestionOption, ...]

    @property
    def is_ranked(self) -> bool:
        return self.selection_type == "ranked"

    def option(self, letter: Optional[str]) -> Optional[QuestionOption]:
        if not letter:
            return None
        for opt in self.options:
            if opt.letter == letter.upper():
                return opt
        return None


@dataclass(frozen=True)
class ScriptSection:
    name: str
    context: Optional[str]  # None 表示不计分
    transition: str = ""


@dataclass(frozen=True)
class QuestionScript:
    """带版本号的访谈题本。计分权重属于题本的一部分。"""

    version: str
    sections: Tuple[ScriptSection, ...]
    questions: Tuple[Question, ...]
    weight_most: int = 2
    weight_second: int = 1

    @property
    def question_count(self) -> int:
        return len(self.questions)

    def section(self, name: str) -> ScriptSection:
        for section in self.sections:
            if section.name == name:
                return section
        raise KeyError(f"未知题组: '{name}'")

    def questions_for(self, section_name: str) -> List[Question]:
        return [q for q in self.questions if q.section == section_name]

    def section_boundaries(self) -> List[Tuple[str, int]]:
        """每个题组结束时的累计题数，例如 [("context", 3), ("default_mode", 12), ...]。"""
        boundaries: List[Tuple[str, int]] = []
        total = 0
        for section in self.sections:
            total += len(self.questions_for(section.name))
            boundaries.append((section.name, total))
        return boundaries


# =============================================================================
# 评估分类体系
# =============================================================================


@dataclass(frozen=True)
class StakeholderRole:
    id: str
    name: str


@dataclass(frozen=True)
class MaturityLevel:
    level: int
    name: str
    description: str


@dataclass(frozen=True)
class Dimension:
    id: str
    name: str
    description: str
    role_weights: Mapping[str, float]

    def weight_for(self, role: str) -> float:
        return float(self.role_weights.get(role, 1.0))


@dataclass(frozen=True)
class Pillar:
    id: str
    name: str
    weight: float
    aggregation: str  # mean / min / median
    dimensions: Tuple[Dimension, ...]


@dataclass(frozen=True)
class ReadinessTaxonomy:
    name: str
    version: str
    title: str
    roles: Tuple[StakeholderRole, ...]
    maturity_levels: Tuple[MaturityLevel, ...]
    pillars: Tuple[Pillar, ...]

    @property
    def role_ids(self) -> List[str]:
        return [r.id for r in self.roles]

    def role_name(self, role_id: str) -> str:
        for role in self.roles:
            if role.id == role_id:
                return role.name
        return role_id

    def iter_dimensions(self) -> List[Tuple[Pillar, Dimension]]:
        return [(p, d) for p in self.pillars for d in p.dimensions]


# =============================================================================
# 构建与校验
# =============================================================================


def _require(data: Dict[str, Any], key: str, where: str) -> Any:
    if not isinstance(data, dict):
        raise CatalogValidationError(
            CATALOG_SCHEMA_INVALID,
            f"{where} 必须为字典，实际类型: {type(data).__name__}",
        )
    value = data.get(key)
    if value is None or value == "" or value == []:
        raise CatalogValidationError(
            CATALOG_SCHEMA_INVALID, f"{where} 缺少字段 '{key}'"
        )
    return value


def _as_list(value: Any, where: str) -> List[Any]:
    if not isinstance(value, list):
        raise CatalogValidationError(
            CATALOG_SCHEMA_INVALID,
            f"{where} 必须为列表，实际类型: {type(value).__name__}",
        )
    return value


def build_archetype_catalog(data: Dict[str, Any]) -> ArchetypeCatalog:
    """从字典构建原型目录。"""
    entries = _as_list(_require(data, "archetypes", "原型目录"), "archetypes")
    archetypes: List[Archetype] = []
    seen = set()
    for entry in entries:
        key = str(_require(entry, "key", "原型"))
        if key in seen:
            raise CatalogValidationError(
                CATALOG_SCHEMA_INVALID, f"原型 key 重复: '{key}'"
            )
        seen.add(key)
        archetypes.append(Archetype(
            key=key,
            name=str(entry.get("name") or key.title()),
            letter=str(entry.get("letter", "")).upper(),
            core_traits=tuple(entry.get("core_traits") or ()),
            under_pressure=str(entry.get("under_pressure", "")),
            when_grounded=str(entry.get("when_grounded", "")),
            overuse_signals=tuple(entry.get("overuse_signals") or ()),
        ))
    return ArchetypeCatalog(
        name=str(data.get("name", "archetypes")),
        archetypes=tuple(archetypes),
    )


def build_question_script(
    data: Dict[str, Any], catalog: ArchetypeCatalog
) -> QuestionScript:
    """从字典构建题本，并校验选项均指向目录中的原型。"""
    version = str(_require(data, "version", "题本"))
    weights = data.get("weights") or {}

    sections: List[ScriptSection] = []
    for entry in _as_list(_require(data, "sections", "题本"), "sections"):
        context = entry.get("context")
        if context is not None and context not in SCORING_CONTEXTS:
            raise CatalogValidationError(
                CATALOG_SCHEMA_INVALID,
                f"题组 '{entry.get('name')}' 的 context 不合法: '{context}'",
            )
        sections.append(ScriptSection(
            name=str(_require(entry, "name", "题组")),
            context=context,
            transition=str(entry.get("transition", "")).strip(),
        ))
    section_names = {s.name for s in sections}
    known = set(catalog.keys())

    questions: List[Question] = []
    for entry in _as_list(_require(data, "questions", "题本"), "questions"):
        qid = str(_require(entry, "id", "题目"))
        section = entry.get("section")
        if section not in section_names:
            raise CatalogValidationError(
                CATALOG_SCHEMA_INVALID, f"题目 {qid} 引用了未知题组: '{section}'"
            )
        selection_type = entry.get("selection_type", "single")
        if selection_type not in SELECTION_TYPES:
            raise CatalogValidationError(
                CATALOG_SCHEMA_INVALID,
                f"题目 {qid} 的 selection_type 不合法: '{selection_type}'",
            )
        options: List[QuestionOption] = []
        for opt in _as_list(_require(entry, "options", f"题目 {qid}"), "options"):
            archetype = opt.get("archetype")
            if archetype not in known:
                raise CatalogValidationError(
                    CATALOG_SCHEMA_INVALID,
                    f"题目 {qid} 的选项指向未知原型: '{archetype}'",
                )
            options.append(QuestionOption(
                letter=str(_require(opt, "letter", f"题目 {qid} 选项")).upper(),
                archetype=archetype,
                text=str(opt.get("text", "")),
            ))
        questions.append(Question(
            id=qid,
            section=section,
            stem=str(_require(entry, "stem", f"题目 {qid}")),
            selection_type=selection_type,
            options=tuple(options),
        ))

    # 题目必须按题组顺序排列，位置映射依赖这一点
    order = [s.name for s in sections]
    positions = [order.index(q.section) for q in questions]
    if positions != sorted(positions):
        raise CatalogValidationError(
            CATALOG_SCHEMA_INVALID, "题目顺序必须与题组声明顺序一致"
        )

    return QuestionScript(
        version=version,
        sections=tuple(sections),
        questions=tuple(questions),
        weight_most=int(weights.get("most", 2)),
        weight_second=int(weights.get("second", 1)),
    )


def build_taxonomy(data: Dict[str, Any]) -> ReadinessTaxonomy:
    """从字典构建评估分类体系。"""
    name = str(_require(data, "name", "分类体系"))
    roles = tuple(
        StakeholderRole(id=str(_require(r, "id", "角色")), name=str(r.get("name") or r["id"]))
        for r in _as_list(_require(data, "roles", name), "roles")
    )
    role_ids = {r.id for r in roles}
    levels = tuple(
        MaturityLevel(
            level=int(m["level"]),
            name=str(m.get("name", "")),
            description=str(m.get("description", "")),
        )
        for m in _as_list(data.get("maturity_levels") or [], "maturity_levels")
    )

    pillars: List[Pillar] = []
    seen_dims = set()
    for p in _as_list(_require(data, "pillars", name), "pillars"):
        pid = str(_require(p, "id", "支柱"))
        weight = float(_require(p, "weight", f"支柱 {pid}"))
        if weight <= 0:
            raise CatalogValidationError(
                CATALOG_SCHEMA_INVALID, f"支柱 {pid} 的权重必须为正数"
            )
        aggregation = p.get("aggregation", "mean")
        if aggregation not in AGGREGATIONS:
            raise CatalogValidationError(
                CATALOG_SCHEMA_INVALID,
                f"支柱 {pid} 的 aggregation 不合法: '{aggregation}'",
            )
        dims: List[Dimension] = []
        for d in _as_list(_require(p, "dimensions", f"支柱 {pid}"), "dimensions"):
            did = str(_require(d, "id", "维度"))
            if did in seen_dims:
                raise CatalogValidationError(
                    CATALOG_SCHEMA_INVALID, f"维度 id 重复: '{did}'"
                )
            seen_dims.add(did)
            role_weights = dict(d.get("role_weights") or {})
            unknown = set(role_weights) - role_ids
            if unknown:
                raise CatalogValidationError(
                    CATALOG_SCHEMA_INVALID,
                    f"维度 {did} 引用了未知角色: {sorted(unknown)}",
                )
            dims.append(Dimension(
                id=did,
                name=str(d.get("name") or did),
                description=str(d.get("description", "")),
                role_weights=MappingProxyType(
                    {k: float(v) for k, v in role_weights.items()}
                ),
            ))
        pillars.append(Pillar(
            id=pid,
            name=str(p.get("name") or pid),
            weight=weight,
            aggregation=aggregation,
            dimensions=tuple(dims),
        ))

    return ReadinessTaxonomy(
        name=name,
        version=str(data.get("version", "1.0")),
        title=str(data.get("title") or name),
        roles=roles,
        maturity_levels=levels,
        pillars=tuple(pillars),
    )


# =============================================================================
# 文件加载
# =============================================================================


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        raise CatalogValidationError(
            CATALOG_NOT_FOUND, f"配置文件不存在: {path}"
        )
    try:
        with open(path, "r", encoding="utf-8") as f:
            result = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise CatalogValidationError(
            CATALOG_SCHEMA_INVALID, f"YAML 解析失败: {path}: {exc}"
        ) from exc
    if not isinstance(result, dict):
        raise CatalogValidationError(
            CATALOG_SCHEMA_INVALID,
            f"配置文件顶层必须为字典，实际类型: {type(result).__name__}",
        )
    return result


def load_archetypes(
    path: Optional[Union[str, Path]] = None,
) -> Tuple[ArchetypeCatalog, QuestionScript]:
    """加载原型目录与题本。不传 path 时使用随包发布的默认配置。"""
    source = Path(path) if path else _DATA_DIR / "archetypes.yaml"
    data = _read_yaml(source)
    catalog = build_archetype_catalog(data)
    script = build_question_script(_require(data, "script", str(source)), catalog)
    logger.info(
        "原型目录 '%s' 加载完成 (%d 个原型, 题本 v%s, %d 题)",
        catalog.name, len(catalog.archetypes), script.version,
        script.question_count,
    )
    return catalog, script


def load_taxonomy(name_or_path: Union[str, Path]) -> ReadinessTaxonomy:
    """按名称（内置分类体系）或文件路径加载评估分类体系。"""
    candidate = Path(name_or_path)
    if not candidate.suffix:
        candidate = _TAXONOMY_DIR / f"{name_or_path}.yaml"
    taxonomy = build_taxonomy(_read_yaml(candidate))
    logger.info(
        "分类体系 '%s' v%s 加载完成 (%d 个支柱, %d 个维度)",
        taxonomy.name, taxonomy.version, len(taxonomy.pillars),
        len(taxonomy.iter_dimensions()),
    )
    return taxonomy


def available_taxonomies() -> List[str]:
    return sorted(p.stem for p in _TAXONOMY_DIR.glob("*.yaml"))


@lru_cache(maxsize=None)
def default_archetypes() -> Tuple[ArchetypeCatalog, QuestionScript]:
    """进程级缓存的默认原型目录与题本。"""
    return load_archetypes()


@lru_cache(maxsize=None)
def default_taxonomy(name: str = "industry_4_0") -> ReadinessTaxonomy:
    """进程级缓存的内置分类体系。"""
    return load_taxonomy(name)
