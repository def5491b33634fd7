"""访谈记录来源。 / Transcript sources, one per session kind.

存储层通过 record loader 提供原始会话记录（字典）；每种会话类型的字段命名不同，
由对应的 TranscriptSource 统一转换为 StakeholderTranscript。

- IndustryTranscriptSource:  stakeholder_role + conversation_history
- CoachingTranscriptSource:  固定角色 + messages
- EducationTranscriptSource: participant_type + conversation_history（匿名）

record loader 可以是同步或异步函数：loader(session_ref) -> dict。
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, Tuple, Union

from meridian.errors import MeridianError, TranscriptParseError
from meridian.primitives.models import STATUS_COMPLETED, STATUS_INCOMPLETE, StakeholderTranscript

logger = logging.getLogger(__name__)

RecordLoader = Union[
    Callable[[str], Awaitable[Optional[Dict[str, Any]]]],
    Callable[[str], Optional[Dict[str, Any]]],
]


class TranscriptSource(Protocol):
    async def fetch_transcript(self, session_ref: str) -> StakeholderTranscript:
        ...


class _RecordSource:
    """按会话类型映射字段的通用实现。"""

    role_field = ""
    history_field = "conversation_history"
    participant_field: Optional[str] = None

    def __init__(self, loader: RecordLoader):
        self._loader = loader

    async def _load(self, session_ref: str) -> Dict[str, Any]:
        record = self._loader(session_ref)
        if inspect.isawaitable(record):
            record = await record
        if record is None:
            raise TranscriptParseError(f"session '{session_ref}' was not found")
        if not isinstance(record, dict):
            raise TranscriptParseError(
                f"session '{session_ref}' record must be a mapping, got {type(record).__name__}"
            )
        return record

    def role_of(self, record: Dict[str, Any]) -> Any:
        return record.get(self.role_field)

    @staticmethod
    def status_of(record: Dict[str, Any]) -> str:
        status = str(record.get("status") or STATUS_INCOMPLETE).lower()
        return STATUS_COMPLETED if status in ("completed", "complete") else status

    async def fetch_transcript(self, session_ref: str) -> StakeholderTranscript:
        record = await self._load(session_ref)
        participant = record.get(self.participant_field) if self.participant_field else None
        return StakeholderTranscript.from_dict({
            "role": self.role_of(record),
            "status": self.status_of(record),
            "history": record.get(self.history_field),
            "participant": participant,
            "session_ref": session_ref,
        })


class IndustryTranscriptSource(_RecordSource):
    """企业利益相关者访谈。"""

    role_field = "stakeholder_role"
    participant_field = "stakeholder_name"


class CoachingTranscriptSource(_RecordSource):
    """教练场景的原型访谈，所有记录使用同一个角色。"""

    history_field = "messages"
    participant_field = "client_name"

    def __init__(self, loader: RecordLoader, role: str = "participant"):
        super().__init__(loader)
        self.role = role

    def role_of(self, record: Dict[str, Any]) -> Any:
        return self.role


class EducationTranscriptSource(_RecordSource):
    """教育场景的匿名访谈，不携带参与者姓名。"""

    role_field = "participant_type"


async def collect_transcripts(
    source: TranscriptSource, session_refs: Iterable[str],
) -> Tuple[List[StakeholderTranscript], List[str]]:
    """批量获取访谈记录。单条失败记录为警告，不影响其他记录。"""
    transcripts: List[StakeholderTranscript] = []
    warnings: List[str] = []
    for ref in session_refs:
        try:
            transcripts.append(await source.fetch_transcript(ref))
        except MeridianError as exc:
            logger.warning(f"访谈记录 {ref} 获取失败: {exc}")
            warnings.append(f"Session {ref} skipped: {exc.message}")
    return transcripts, warnings
