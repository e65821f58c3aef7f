"""
状态机引擎 - 校验并执行状态转换
"""
from typing import Dict, List, Optional
from dataclasses import dataclass, field
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StateTransition:
    """
    状态转换定义

    Attributes:
        from_state: 源状态
        to_state: 目标状态
        trigger: 触发动作
    """

    from_state: str
    to_state: str
    trigger: str


@dataclass
class StateMachineConfig:
    """
    状态机配置

    Attributes:
        name: 状态机名称
        states: 所有状态
        transitions: 转换列表
        terminal_states: 终态，不存在任何出边
    """

    name: str
    states: List[str]
    transitions: List[StateTransition]
    terminal_states: List[str] = field(default_factory=list)


class StateMachine:
    """
    状态机

    以 (from_state, trigger) 为键查找转换；终态拒绝一切转换。

    Example:
        >>> machine = StateMachine(config, current_state="pending")
        >>> if machine.can_transition_to("assigned", "assign"):
        ...     machine.transition_to("assigned", "assign")
    """

    def __init__(self, config: StateMachineConfig, current_state: str):
        if current_state not in config.states:
            raise ValueError(f"未知状态: {current_state}")
        self._config = config
        self._current_state = current_state
        self._transition_map: Dict[str, Dict[str, StateTransition]] = {}

        for t in config.transitions:
            self._transition_map.setdefault(t.from_state, {})[t.trigger] = t

    @property
    def current_state(self) -> str:
        return self._current_state

    def is_terminal(self) -> bool:
        return self._current_state in self._config.terminal_states

    def find_transition(self, target_state: str, trigger: str) -> Optional[StateTransition]:
        """查找从当前状态出发、由 trigger 触发、到达 target_state 的转换"""
        if self.is_terminal() or target_state not in self._config.states:
            return None
        transition = self._transition_map.get(self._current_state, {}).get(trigger)
        if transition is None or transition.to_state != target_state:
            return None
        return transition

    def can_transition_to(self, target_state: str, trigger: str) -> bool:
        return self.find_transition(target_state, trigger) is not None

    def transition_to(self, target_state: str, trigger: str) -> bool:
        """
        执行状态转换

        Returns:
            True 如果转换成功
        """
        transition = self.find_transition(target_state, trigger)
        if transition is None:
            logger.warning(
                f"Invalid {self._config.name} transition: "
                f"{self._current_state} -> {target_state} (trigger: {trigger})"
            )
            return False

        previous_state = self._current_state
        self._current_state = target_state
        logger.info(f"{self._config.name} transition: {previous_state} -> {target_state} (trigger: {trigger})")
        return True

    def available_triggers(self) -> List[str]:
        """当前状态下可用的触发动作"""
        if self.is_terminal():
            return []
        return list(self._transition_map.get(self._current_state, {}).keys())
