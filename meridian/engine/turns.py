"""回合处理器基类。 / Turn processor base.

职责 / Responsibilities:
1. 推进一个逻辑回合：记录用户发言 → 计算下一状态 → 请求模型回复
   / Advance one logical turn: record the user utterance, compute the next
   state, ask the model for the reply
2. 表驱动的阶段迁移（PhaseTable），规则反复应用直到没有规则触发
   / Table-driven phase transitions, applied until no rule fires

不负责：持久化、并发控制（同一会话同一时刻只允许一个回合由调用方保证）。
/ Not responsible for: persistence or per-session serialization.

输入的 state 与 history 永远不会被修改；模型调用失败时调用方持有的
状态保持原样，可以直接重试。
"""

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from meridian.errors import AlreadyComplete
from meridian.primitives.models import (
    ASSISTANT,
    SYSTEM,
    USER,
    ParticipantContext,
    TurnResult,
    Utterance,
)

logger = logging.getLogger(__name__)

ModelCaller = Callable[..., Awaitable[Any]]


@dataclass(frozen=True)
class PhaseRule:
    """一条阶段迁移规则：当前阶段为 phase 且 trigger(state) 为真时迁移到 next_phase。"""

    phase: str
    next_phase: str
    trigger: Callable[[Any], bool]


def always(_state: Any) -> bool:
    return True


class PhaseTable:
    """阶段迁移表。 / Phase transition table.

    settle() 从给定状态出发，反复应用第一条匹配的规则，直到没有规则触发。
    进入 terminal 阶段时同时置 is_complete。
    """

    def __init__(self, rules: Iterable[PhaseRule], terminal: str):
        self._rules: Tuple[PhaseRule, ...] = tuple(rules)
        self.terminal = terminal
        phases = [r.phase for r in self._rules]
        if len(phases) != len(set(phases)):
            raise ValueError(f"每个阶段只能有一条迁移规则: {phases}")

    @property
    def phases(self) -> List[str]:
        ordered: List[str] = []
        for rule in self._rules:
            for name in (rule.phase, rule.next_phase):
                if name not in ordered:
                    ordered.append(name)
        return ordered

    def rule_for(self, phase: str) -> Optional[PhaseRule]:
        for rule in self._rules:
            if rule.phase == phase:
                return rule
        return None

    def settle(self, state: Any) -> Any:
        # 规则链是无环的，迁移次数不会超过规则数
        for _ in range(len(self._rules) + 1):
            rule = self.rule_for(state.phase)
            if rule is None or not rule.trigger(state):
                return state
            logger.debug(f"阶段迁移: {state.phase} -> {rule.next_phase}")
            state = dataclasses.replace(
                state,
                phase=rule.next_phase,
                is_complete=rule.next_phase == self.terminal,
            )
        raise RuntimeError(f"阶段迁移表存在环路: {self.phases}")


def _to_messages(history: Sequence[Utterance]) -> List[Dict[str, str]]:
    """转换为适配器消息格式。system 发言不进入多轮消息。"""
    return [u.to_dict() for u in history if u.role != SYSTEM and u.content]


class TurnProcessor:
    """回合处理器基类。 / Turn processor base.

    子类提供：
        phase_table:        阶段迁移表
        opening_trigger:    会话开场时发给模型的占位用户消息（不记录到历史）
        initial_state():    会话开场前的初始状态
        advance_state():    用户回合对计数器的更新（阶段迁移由 phase_table 完成）
        instruction():      根据迁移前后的状态生成本回合的阶段指令
        system_prompt():    组合系统提示词
    """

    phase_table: PhaseTable
    opening_trigger = "[Session started]"

    def __init__(self, llm_caller: ModelCaller):
        self._llm_caller = llm_caller

    # ------------------------------------------------------------------
    # 子类钩子
    # ------------------------------------------------------------------

    def initial_state(self, context: ParticipantContext) -> Any:
        raise NotImplementedError

    def advance_state(self, state: Any, content: str) -> Any:
        raise NotImplementedError

    def instruction(
        self, previous: Any, current: Any, context: ParticipantContext,
    ) -> str:
        raise NotImplementedError

    def system_prompt(
        self, state: Any, instruction: str, context: ParticipantContext,
    ) -> str:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # 回合推进
    # ------------------------------------------------------------------

    async def process_turn(
        self,
        incoming: Optional[Union[Utterance, str]],
        state: Optional[Any],
        history: Sequence[Utterance],
        context: ParticipantContext,
    ) -> TurnResult:
        """推进一个逻辑回合，返回新状态与本回合新增的发言。

        state 为 None 时为会话开场：不消费 incoming，生成开场白。
        """
        prior = list(history)

        if state is None:
            if incoming is not None:
                logger.warning("会话尚未开始，忽略开场前收到的用户消息")
            start = self.initial_state(context)
            current = self.phase_table.settle(start)
            instruction = self.instruction(start, current, context)
            messages = _to_messages(prior) + [
                {"role": USER, "content": self.opening_trigger}
            ]
            new_utterances: Tuple[Utterance, ...] = ()
        else:
            if state.is_complete:
                raise AlreadyComplete(
                    f"session is already complete (phase '{state.phase}')"
                )
            if incoming is None:
                raise ValueError("incoming message is required once the session has started")
            user = incoming if isinstance(incoming, Utterance) else Utterance(USER, incoming)
            if user.role != USER:
                user = Utterance(USER, user.content, user.timestamp)
            current = self.phase_table.settle(self.advance_state(state, user.content))
            instruction = self.instruction(state, current, context)
            messages = _to_messages(prior + [user])
            new_utterances = (user,)

        completion = await self._llm_caller(
            system_prompt=self.system_prompt(current, instruction, context),
            messages=messages,
        )
        reply = Utterance(ASSISTANT, completion.text.strip())
        logger.info(
            f"回合完成: phase={current.phase}, complete={current.is_complete}, "
            f"tokens={completion.usage.total_tokens}"
        )
        return TurnResult(
            reply=reply,
            state=current,
            usage=completion.usage,
            utterances=new_utterances + (reply,),
        )
