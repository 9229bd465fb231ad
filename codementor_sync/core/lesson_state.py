"""Progress through a lesson plan: modules, exercises, and learning phases.

All functions are pure and return a new ``LessonState``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace

PHASES = ("introduction", "content", "practice", "review", "assessment")
NO_EXERCISE = -1


@dataclass(frozen=True)
class LessonState:
    plan_id: int
    plan_title: str
    total_modules: int
    total_exercises: int
    current_module_index: int = 0
    current_exercise_index: int = NO_EXERCISE
    phase: str = "introduction"
    completed_sections: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "planId": self.plan_id,
            "planTitle": self.plan_title,
            "currentModuleIndex": self.current_module_index,
            "currentExerciseIndex": self.current_exercise_index,
            "phase": self.phase,
            "completedSections": list(self.completed_sections),
            "totalModules": self.total_modules,
            "totalExercises": self.total_exercises,
        }


def init_lesson_state(plan_id: int, plan_title: str, total_modules: int, total_exercises: int) -> LessonState:
    return LessonState(
        plan_id=plan_id,
        plan_title=plan_title,
        total_modules=total_modules,
        total_exercises=total_exercises,
    )


def _with_completed(state: LessonState, section: str) -> tuple[str, ...]:
    if section in state.completed_sections:
        return state.completed_sections
    return state.completed_sections + (section,)


def next_phase(state: LessonState) -> LessonState:
    """Advance one phase; after assessment, move on to the next module."""
    index = PHASES.index(state.phase)
    if index == len(PHASES) - 1:
        return next_module(state)
    phase = PHASES[index + 1]
    if phase == "practice" and state.current_exercise_index == NO_EXERCISE:
        phase = "review"
    return replace(state, phase=phase)


def next_module(state: LessonState) -> LessonState:
    """Mark the current module done and start the next one. No-op on the last module."""
    if state.current_module_index >= state.total_modules - 1:
        return state
    return replace(
        state,
        current_module_index=state.current_module_index + 1,
        current_exercise_index=NO_EXERCISE,
        phase="introduction",
        completed_sections=_with_completed(state, f"module_{state.current_module_index}"),
    )


def select_exercise(state: LessonState, exercise_index: int) -> LessonState:
    return replace(state, current_exercise_index=exercise_index, phase="practice")


def complete_current_exercise(state: LessonState) -> LessonState:
    if state.current_exercise_index == NO_EXERCISE:
        return state
    section = f"module_{state.current_module_index}_exercise_{state.current_exercise_index}"
    return replace(state, completed_sections=_with_completed(state, section))


def get_lesson_progress(state: LessonState) -> int:
    """Overall progress as a whole percentage in 0..100."""
    if state.total_modules <= 0:
        return 0
    modules = state.total_modules
    module_progress = state.current_module_index / modules
    phase_progress = PHASES.index(state.phase) / len(PHASES)
    progress = module_progress * (modules - 1) / modules + phase_progress / modules
    return min(100, max(0, math.floor(progress * 100 + 0.5)))
