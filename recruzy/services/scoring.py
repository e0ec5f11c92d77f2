# recruzy/services/scoring.py
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field

from recruzy.errors import EmptyAnswerKey, MalformedRecordError


class AnswerKey:
    """
    Неизменяемое соответствие "id вопроса -> индекс правильного варианта".

    Ключи хранятся строками: ответы приходят из JSON, где ключи объектов
    всегда строки.
    """

    def __init__(self, mapping: Mapping[Any, int]):
        self._mapping = MappingProxyType({str(k): v for k, v in mapping.items()})

    @classmethod
    def from_questions(cls, questions: Iterable) -> "AnswerKey":
        """Builds the key from Question rows, rejecting malformed rows."""
        mapping = {}
        for question in questions:
            options = question.options
            index = question.correct_answer
            if (
                not isinstance(options, list)
                or isinstance(index, bool)
                or not isinstance(index, int)
                or not 0 <= index < len(options)
            ):
                raise MalformedRecordError(
                    f"Question {question.id} has no valid correct answer"
                )
            mapping[question.id] = index
        return cls(mapping)

    def __len__(self):
        return len(self._mapping)

    def __iter__(self):
        return iter(self._mapping)

    def items(self):
        return self._mapping.items()

    def __getitem__(self, question_id):
        return self._mapping[str(question_id)]


class ScoreOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int = Field(..., ge=0, le=100)
    correct_count: int = Field(..., ge=0)
    total: int = Field(..., gt=0)
    correctness: Dict[str, bool] = Field(default_factory=dict)


def _is_correct(submitted: Any, expected: int) -> bool:
    # bool - подкласс int, True не должен засчитываться как вариант 1
    if isinstance(submitted, bool) or not isinstance(submitted, int):
        return False
    return submitted == expected


def percentage(correct: int, total: int) -> int:
    """round(100 * correct / total), half up, without float error."""
    return (200 * correct + total) // (2 * total)


def score(answers: Mapping[Any, Any], key: Mapping[Any, int]) -> ScoreOutcome:
    """
    Считает процент правильных ответов.

    Пропущенные и некорректные ответы считаются неверными; исключение
    поднимается только для пустого ключа.
    """
    if not key:
        raise EmptyAnswerKey()

    submitted = {str(k): v for k, v in (answers or {}).items()}
    correctness = {
        str(question_id): _is_correct(submitted.get(str(question_id)), expected)
        for question_id, expected in key.items()
    }
    correct_count = sum(1 for ok in correctness.values() if ok)
    total = len(correctness)

    return ScoreOutcome(
        score=percentage(correct_count, total),
        correct_count=correct_count,
        total=total,
        correctness=correctness,
    )
