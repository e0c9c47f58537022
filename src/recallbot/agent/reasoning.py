from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import logging

from recallbot.agent.base import CompletionProvider
from recallbot.exceptions import CompletionError
from recallbot.message_proc import generate_openai_message, normalize_history

logger = logging.getLogger(__name__)


PLANNING_INSTRUCTION = """STRUCTURED THINKING - PHASE 1: PLANNING

Your task is to plan how to approach the following question or request. Think about:
- What is the user actually asking for?
- What information or analysis do I need to provide?
- What approach should I take to answer this effectively?
- Are there any considerations or edge cases I should think about?

Provide a clear plan for how you will approach this question. Be thorough but concise.

User's question: {question}"""

REASONING_INSTRUCTION = """STRUCTURED THINKING - PHASE 2: REASONING

Based on your planning, now work through the logic and analysis needed to answer the question.

Your planning was:
{plan}

Now execute that plan. Think through:
- Step-by-step analysis or solution
- Different perspectives or approaches
- Any logic or calculations
- Key insights or conclusions

User's question: {question}"""

SUMMARY_INSTRUCTION = """STRUCTURED THINKING - PHASE 3: SUMMARY

Based on your planning and reasoning, provide the final response to the user.

Your planning was:
{plan}

Your reasoning was:
{reasoning}

Now provide a clear, concise and helpful final response that directly addresses the user's question. This is what will be sent to the user, so make it:
- Clear and easy to understand
- Complete but not overly verbose
- Actionable when appropriate
- In your characteristic personality and tone

User's question: {question}"""


@dataclass
class ReasoningTrace:
    """Outputs of one pipeline run. Only `answer` is ever shown or stored."""

    plan: str
    reasoning: str
    answer: str


class StructuredReasoner:
    """Answers a message in three strictly sequential completion calls.

    1. Planning: decide how to approach the message.
    2. Reasoning: work through the plan.
    3. Summary: write the final, user-facing answer.

    Every call carries the persona, a phase instruction, the full
    conversation history and the message. A failure in any phase raises
    `CompletionError` and nothing is returned.
    """

    def __init__(self, provider: CompletionProvider, system_prompt: str = "") -> None:
        self.provider = provider
        self.system_prompt = system_prompt

    def run(
        self,
        user_message: str,
        history: Optional[List[Dict[str, Any]]] = None,
    ) -> str:
        return self.trace(user_message, history).answer

    def trace(
        self,
        user_message: str,
        history: Optional[List[Dict[str, Any]]] = None,
    ) -> ReasoningTrace:
        history = normalize_history(history)
        logger.info("Starting structured thinking process...")

        plan = self._run_phase(
            "planning",
            PLANNING_INSTRUCTION.format(question=user_message),
            user_message,
            history,
        )
        reasoning = self._run_phase(
            "reasoning",
            REASONING_INSTRUCTION.format(plan=plan, question=user_message),
            user_message,
            history,
        )
        answer = self._run_phase(
            "summary",
            SUMMARY_INSTRUCTION.format(plan=plan, reasoning=reasoning, question=user_message),
            user_message,
            history,
        )

        logger.info("Structured thinking process completed")
        return ReasoningTrace(plan=plan, reasoning=reasoning, answer=answer)

    def build_messages(
        self,
        instruction: str,
        user_message: str,
        history: List[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        system_content = f"{self.system_prompt}\n\n{instruction}" if self.system_prompt else instruction
        return (
            [generate_openai_message(system_content, role="system")]
            + list(history)
            + [generate_openai_message(user_message, role="user")]
        )

    def _run_phase(
        self,
        phase: str,
        instruction: str,
        user_message: str,
        history: List[Dict[str, Any]],
    ) -> str:
        logger.debug("Phase %s started", phase)
        messages = self.build_messages(instruction, user_message, history)
        try:
            output = self.provider.complete(messages)
        except Exception as exc:
            raise CompletionError(f"{phase.capitalize()} phase failed: {exc}", phase=phase) from exc
        logger.debug("Phase %s completed", phase)
        return output
