"""Quality scoring for normalized threads."""

from convoport.models import ThreadDetail, ValidationResult

QUERY_POINTS = 10
ANSWER_POINTS = 15
ENTRY_MAX_POINTS = QUERY_POINTS + ANSWER_POINTS

# Share of entries with neither query nor answer above which a thread is rejected
MAX_EMPTY_RATIO = 0.5

DEFAULT_QUALITY_THRESHOLD = 50


class DataValidator:
    """Scores a thread and separates hard failures from soft warnings.

    Hard failures (valid=False) stop the export. Low completeness only
    warns: degraded threads are still exported, but flagged.
    """

    def __init__(self, threshold: int = DEFAULT_QUALITY_THRESHOLD) -> None:
        self.threshold = threshold

    def validate(self, detail: ThreadDetail | None) -> ValidationResult:
        errors: list[str] = []
        warnings: list[str] = []

        if detail is None:
            return ValidationResult(False, ["Invalid data structure"], warnings, 0, {})

        if not detail.title or not detail.title.strip() or detail.title == "Untitled":
            warnings.append("Thread has no meaningful title")

        if not detail.id:
            errors.append("Missing thread id")

        entries = detail.entries
        if not entries:
            errors.append("No conversation entries found")

        score = 0
        empty_entries = 0
        total_queries = 0
        total_answers = 0
        for entry in entries:
            has_query = bool(entry.query.strip())
            has_answer = bool(entry.answer.strip())
            if has_query:
                total_queries += 1
                score += QUERY_POINTS
            if has_answer:
                total_answers += 1
                score += ANSWER_POINTS
            if entry.is_empty:
                empty_entries += 1

        max_score = len(entries) * ENTRY_MAX_POINTS
        completeness = round(score / max_score * 100) if max_score else 0

        if entries and empty_entries > len(entries) * MAX_EMPTY_RATIO:
            errors.append(f"More than 50% of entries empty ({empty_entries}/{len(entries)})")

        if entries and completeness < self.threshold:
            warnings.append(f"Only {completeness}% complete")

        return ValidationResult(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            completeness=completeness,
            stats={
                "total_entries": len(entries),
                "empty_entries": empty_entries,
                "total_queries": total_queries,
                "total_answers": total_answers,
                "has_id": bool(detail.id),
                "has_title": bool(detail.title) and detail.title != "Untitled",
            },
        )

    def meets_minimum_quality(self, result: ValidationResult) -> bool:
        return result.valid and result.completeness >= self.threshold


def generate_report(result: ValidationResult) -> str:
    """One-line human summary of a validation result."""
    parts = []
    if result.valid:
        parts.append(f"Validation passed ({result.completeness}% complete)")
    else:
        parts.append("Validation failed")

    parts.append(f"{result.stats.get('total_queries', 0)} Q, {result.stats.get('total_answers', 0)} A")

    if result.errors:
        parts.append(f"Errors: {', '.join(result.errors)}")
    if 0 < len(result.warnings) <= 3:
        parts.append(f"Warnings: {', '.join(result.warnings)}")
    elif len(result.warnings) > 3:
        parts.append(f"{len(result.warnings)} warnings")

    return " | ".join(parts)
