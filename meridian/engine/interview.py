"""访谈引擎: 题本驱动的回合处理器。 / Interview engine: a script-driven turn processor.

阶段 / Phases:
    opening → <每个题组一个阶段> → closing → complete

- 开场回合发出问候并呈现第一题，随后立即进入第一个题组阶段
- 题组阶段中每个用户回合回答第 turn_index 题，turn_index + 1
- turn_index 达到该题组的累计题数时进入下一个题组
- 最后一题回答后进入 closing（回复为收尾总结）
- closing 阶段的下一个用户回合结束访谈：complete / is_complete
"""

import dataclasses
import logging
from typing import List, Optional

from meridian import prompts
from meridian.catalog.loader import ArchetypeCatalog, Question, QuestionScript, default_archetypes
from meridian.engine.turns import ModelCaller, PhaseRule, PhaseTable, TurnProcessor, always
from meridian.primitives.models import ConversationState, ParticipantContext

logger = logging.getLogger(__name__)

OPENING = "opening"
CLOSING = "closing"
COMPLETE = "complete"


def build_interview_table(script: QuestionScript) -> PhaseTable:
    """由题本的题组边界生成阶段迁移表。"""
    boundaries = script.section_boundaries()
    total = script.question_count
    rules: List[PhaseRule] = [PhaseRule(OPENING, boundaries[0][0], always)]
    for (name, end), (next_name, _) in zip(boundaries, boundaries[1:]):
        rules.append(PhaseRule(name, next_name, lambda s, end=end: s.turn_index >= end))
    rules.append(PhaseRule(boundaries[-1][0], CLOSING, lambda s: s.turn_index >= total))
    # 收尾回合的回复也记在 responses 中
    rules.append(PhaseRule(CLOSING, COMPLETE, lambda s: len(s.responses) > total))
    return PhaseTable(rules, terminal=COMPLETE)


def format_question(question: Question, number: int) -> str:
    options = "\n".join(f"{opt.letter}) {opt.text}" for opt in question.options)
    template = prompts.QUESTION_BLOCK_RANKED if question.is_ranked else prompts.QUESTION_BLOCK_SINGLE
    return template.format(number=number, stem=question.stem, options=options)


class InterviewEngine(TurnProcessor):
    """结构化访谈的回合处理器。 / Turn processor for the structured interview."""

    opening_trigger = "[Session started - please greet me and ask the first question]"

    def __init__(
        self,
        llm_caller: ModelCaller,
        script: Optional[QuestionScript] = None,
        catalog: Optional[ArchetypeCatalog] = None,
    ):
        super().__init__(llm_caller)
        if script is None or catalog is None:
            default_catalog, default_script = default_archetypes()
            script = script or default_script
            catalog = catalog or default_catalog
        self.script = script
        self.catalog = catalog
        self.phase_table = build_interview_table(script)
        self._section_names = [s.name for s in script.sections]

    def is_question_phase(self, phase: str) -> bool:
        return phase in self._section_names

    def initial_state(self, context: ParticipantContext) -> ConversationState:
        return ConversationState(phase=OPENING, script_version=self.script.version)

    def advance_state(self, state: ConversationState, content: str) -> ConversationState:
        turn_index = state.turn_index
        if self.is_question_phase(state.phase):
            turn_index += 1
        return dataclasses.replace(
            state,
            turn_index=turn_index,
            responses=state.responses + (content,),
        )

    def current_question(self, state: ConversationState) -> Optional[Question]:
        if self.is_question_phase(state.phase) and state.turn_index < self.script.question_count:
            return self.script.questions[state.turn_index]
        return None

    def instruction(
        self,
        previous: ConversationState,
        current: ConversationState,
        context: ParticipantContext,
    ) -> str:
        total = self.script.question_count
        if current.phase == COMPLETE:
            completion = f"Share this closing note: {context.completion_message} " if context.completion_message else ""
            return prompts.INTERVIEW_COMPLETE.format(completion=completion)
        if current.phase == CLOSING:
            return prompts.INTERVIEW_CLOSING.format(total=total)

        question = self.current_question(current)
        if question is None:
            raise RuntimeError(f"阶段 {current.phase} 没有可呈现的题目 (turn_index={current.turn_index})")
        block = format_question(question, current.turn_index + 1)
        section = self.script.section(current.phase)

        if previous.phase == OPENING:
            welcome = f"Use this welcome message: {context.welcome_message} " if context.welcome_message else ""
            return prompts.INTERVIEW_OPENING.format(
                welcome=welcome, transition=section.transition, question=block,
            )

        transition = ""
        if previous.phase != current.phase and section.transition:
            transition = prompts.INTERVIEW_SECTION_TRANSITION.format(transition=section.transition)
        return prompts.INTERVIEW_QUESTION.format(
            answered=current.turn_index, total=total,
            transition=transition, question=block,
        )

    def system_prompt(
        self, state: ConversationState, instruction: str, context: ParticipantContext,
    ) -> str:
        return prompts.INTERVIEWER_SYSTEM.format(
            facilitator=context.facilitator_name or "your guide",
            participant=context.participant_name or "not provided",
            instruction=instruction,
        )
