"""Document schemas layered on top of generic sanitization.

``prepare_document`` is the single entry point used before enqueue, again
before each remote write, and (in permissive mode) on inbound remote records.
Every normalization here is a fixed point, so running it twice yields the
same document and an empty second report.
"""

from __future__ import annotations

import math
from dataclasses import replace
from typing import Any

from crew_sync.core.entities import BOTH_CREWS, DocumentKind, job_doc_path
from crew_sync.core.operations import (
    CustomOp,
    JobAdd,
    JobDelete,
    JobUpdate,
    KudosReact,
    MediaUpload,
    Mutation,
    PolicyUpdate,
    UserUpdate,
)
from crew_sync.errors import ValidationError
from crew_sync.sanitize.sanitizer import SanitizeReport, SanitizeResult, sanitize

JOB_REQUIRED_TEXT = ("date", "crew", "client", "scope")
JOB_OPTIONAL_TEXT = ("notes", "address", "neighborhood", "zip")
JOB_NUMERIC = ("rehangPrice", "lifetimeSpend")

# Fallbacks used only for inbound remote records (permissive mode).
JOB_DEFAULTS: dict[str, str] = {
    "date": "",
    "crew": "Crew Alpha",
    "client": "Client",
    "scope": "",
}

DEFAULT_CUTOFF_DATE = "2025-12-31"
DEFAULT_MAX_JOBS_PER_DAY = 2
MIN_HOUSE_TIER = 1
MAX_HOUSE_TIER = 5


def to_number(value: Any) -> float | int | None:
    """Coerce numbers and numeric strings (``"$1,200"``) to a finite number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        trimmed = value.strip().replace("$", "").replace(",", "")
        if not trimmed:
            return None
        try:
            parsed = float(trimmed)
        except ValueError:
            return None
        if not math.isfinite(parsed):
            return None
        return int(parsed) if parsed.is_integer() else parsed
    return None


def coerce_id(value: Any, doc_path: str, field: str = "id") -> int:
    """Coerce an id to an int, or raise naming the field."""
    number = to_number(value)
    if number is None:
        raise ValidationError(field, doc_path, f"{field} must be a finite number")
    return int(round(number))


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return False


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _require_text(doc: dict[str, Any], key: str, doc_path: str) -> str:
    value = _text(doc.get(key))
    if not value:
        raise ValidationError(key, doc_path)
    return value


# ── Job ───────────────────────────────────────────────────────────────────────


def _normalize_job(
    doc: dict[str, Any],
    doc_path: str,
    report: SanitizeReport,
    *,
    partial: bool,
    permissive: bool,
) -> dict[str, Any]:
    job = dict(doc)

    job_id = coerce_id(job.get("id"), doc_path)
    if job.get("id") != job_id or isinstance(job.get("id"), bool):
        report.numeric_corrections.append("id")
    job["id"] = job_id

    for key in JOB_REQUIRED_TEXT:
        if partial and key not in job:
            continue
        value = _text(job.get(key))
        if not value:
            if not permissive:
                raise ValidationError(key, doc_path)
            value = JOB_DEFAULTS[key]
            if job.get(key) != value:
                report.warnings.append(f"{key} missing; defaulted to {value!r}")
        elif job.get(key) != value:
            report.string_corrections.append(key)
        job[key] = value

    for key in JOB_OPTIONAL_TEXT:
        if key not in job:
            if partial:
                continue
            job[key] = ""
            continue
        value = _text(job[key])
        if job[key] != value:
            report.string_corrections.append(key)
        job[key] = value

    if "houseTier" in job or not partial:
        raw_tier = job.get("houseTier")
        tier_number = to_number(raw_tier)
        if tier_number is None:
            tier = MIN_HOUSE_TIER
            if "houseTier" in job:
                report.warnings.append(f"houseTier invalid; defaulted to {MIN_HOUSE_TIER}")
        else:
            rounded = int(round(tier_number))
            tier = min(MAX_HOUSE_TIER, max(MIN_HOUSE_TIER, rounded))
            if tier != rounded:
                report.warnings.append(f"houseTier {rounded} outside 1-5; clamped to {tier}")
        if raw_tier != tier or isinstance(raw_tier, bool):
            if "houseTier" in job:
                report.numeric_corrections.append("houseTier")
        job["houseTier"] = tier

    for key in JOB_NUMERIC:
        if key not in job or job[key] is None:
            continue
        number = to_number(job[key])
        if number != job[key] or isinstance(job[key], bool):
            report.numeric_corrections.append(key)
        job[key] = number

    if "vip" in job or not partial:
        vip = _to_bool(job.get("vip"))
        if "vip" in job and job["vip"] is not vip:
            report.numeric_corrections.append("vip")
        job["vip"] = vip

    if "crew" in job:
        both = job.get("bothCrews") is True or job["crew"] == BOTH_CREWS
        if "bothCrews" in job and job["bothCrews"] is not both:
            report.numeric_corrections.append("bothCrews")
        job["bothCrews"] = both

    if "updatedAt" in job:
        stamp = to_number(job["updatedAt"])
        if stamp is None:
            del job["updatedAt"]
            report.removed_paths.append("updatedAt")
            report.warnings.append("updatedAt unparsable; dropped")
        else:
            stamp = int(stamp)
            if job["updatedAt"] != stamp or isinstance(job["updatedAt"], bool):
                report.numeric_corrections.append("updatedAt")
            job["updatedAt"] = stamp

    return job


# ── Policy ────────────────────────────────────────────────────────────────────


def _normalize_policy(doc: dict[str, Any], report: SanitizeReport) -> dict[str, Any]:
    policy = dict(doc)

    cutoff = policy.get("cutoffDateISO")
    if not isinstance(cutoff, str) or not cutoff:
        if "cutoffDateISO" in policy:
            report.warnings.append(f"cutoffDateISO invalid; defaulted to {DEFAULT_CUTOFF_DATE}")
        policy["cutoffDateISO"] = DEFAULT_CUTOFF_DATE

    raw_blocked = policy.get("blockedClients")
    blocked = [
        _text(item)
        for item in (raw_blocked if isinstance(raw_blocked, list) else [])
        if _text(item)
    ]
    if raw_blocked is not None and raw_blocked != blocked:
        report.string_corrections.append("blockedClients")
    policy["blockedClients"] = blocked

    raw_max = policy.get("maxJobsPerDay")
    max_number = to_number(raw_max)
    max_jobs = int(max_number) if max_number is not None and max_number > 0 else None
    if max_jobs is None:
        max_jobs = DEFAULT_MAX_JOBS_PER_DAY
    if raw_max is not None and (raw_max != max_jobs or isinstance(raw_max, bool)):
        report.numeric_corrections.append("maxJobsPerDay")
    policy["maxJobsPerDay"] = max_jobs

    return policy


def _normalize_keyed(doc: dict[str, Any], doc_path: str, report: SanitizeReport) -> dict[str, Any]:
    record = dict(doc)
    raw_id = record.get("id")
    record_id = _require_text(record, "id", doc_path)
    if raw_id != record_id:
        report.string_corrections.append("id")
    record["id"] = record_id
    if "updatedAt" in record:
        stamp = to_number(record["updatedAt"])
        if stamp is None:
            del record["updatedAt"]
            report.removed_paths.append("updatedAt")
        else:
            if record["updatedAt"] != int(stamp) or isinstance(record["updatedAt"], bool):
                report.numeric_corrections.append("updatedAt")
            record["updatedAt"] = int(stamp)
    return record


# ── Entry points ──────────────────────────────────────────────────────────────


def prepare_document(
    kind: DocumentKind,
    document: Any,
    doc_path: str,
    *,
    partial: bool = False,
    permissive: bool = False,
) -> SanitizeResult:
    """Sanitize and validate one document.

    Args:
        kind: Schema family.
        document: Raw document (a mapping).
        doc_path: Path used in diagnostics, e.g. ``"jobs/42"``.
        partial: Patch semantics; required fields are checked only when present.
        permissive: Inbound remote record; missing required text falls back to defaults.

    Raises:
        ValidationError: naming the first offending field and ``doc_path``.
    """
    base = sanitize(document, doc_path)
    if not isinstance(base.cleaned, dict):
        raise ValidationError("(root)", doc_path, "document must be an object")

    report = base.report
    if kind == DocumentKind.JOB:
        cleaned = _normalize_job(
            base.cleaned, doc_path, report, partial=partial, permissive=permissive
        )
    elif kind == DocumentKind.POLICY:
        cleaned = _normalize_policy(base.cleaned, report)
    else:
        cleaned = _normalize_keyed(base.cleaned, doc_path, report)

    return SanitizeResult(cleaned=cleaned, report=report)


def _prefixed(report: SanitizeReport, prefix: str) -> SanitizeReport:
    return SanitizeReport(
        removed_paths=[f"{prefix}.{p}" for p in report.removed_paths],
        numeric_corrections=[f"{prefix}.{p}" for p in report.numeric_corrections],
        string_corrections=[f"{prefix}.{p}" for p in report.string_corrections],
        warnings=list(report.warnings),
    )


def mutation_doc_path(mutation: Mutation) -> str:
    """Remote document path a mutation targets (for diagnostics)."""
    if isinstance(mutation, (JobAdd, JobUpdate)):
        raw_id = mutation.job.get("id") if isinstance(mutation.job, dict) else None
        return job_doc_path(raw_id if raw_id is not None else "unknown")
    if isinstance(mutation, JobDelete):
        return job_doc_path(mutation.job_id)
    if isinstance(mutation, PolicyUpdate):
        return "config/policy"
    if isinstance(mutation, KudosReact):
        return f"kudos/{mutation.kudos_id}"
    if isinstance(mutation, MediaUpload):
        return f"media/{mutation.media_id}"
    if isinstance(mutation, UserUpdate):
        return f"users/{mutation.user_id}"
    path = mutation.payload.get("path") if isinstance(mutation.payload, dict) else None
    return str(path or "custom")


def prepare_mutation(mutation: Mutation) -> tuple[Mutation, SanitizeReport]:
    """Sanitize and validate a mutation's payload for its operation type.

    Returns the cleaned mutation (same variant) and a report with paths
    relative to the payload.

    Raises:
        ValidationError: the mutation cannot be transmitted in its current form.
    """
    doc_path = mutation_doc_path(mutation)

    if isinstance(mutation, JobAdd):
        result = prepare_document(DocumentKind.JOB, mutation.job, doc_path)
        return replace(mutation, job=result.cleaned), _prefixed(result.report, "job")

    if isinstance(mutation, JobUpdate):
        result = prepare_document(DocumentKind.JOB, mutation.job, doc_path, partial=True)
        return replace(mutation, job=result.cleaned), _prefixed(result.report, "job")

    if isinstance(mutation, JobDelete):
        job_id = coerce_id(mutation.job_id, doc_path, field="jobId")
        report = SanitizeReport()
        if job_id != mutation.job_id or isinstance(mutation.job_id, bool):
            report.numeric_corrections.append("jobId")
        return replace(mutation, job_id=job_id), report

    if isinstance(mutation, PolicyUpdate):
        result = prepare_document(DocumentKind.POLICY, mutation.policy, doc_path)
        return replace(mutation, policy=result.cleaned), _prefixed(result.report, "policy")

    if isinstance(mutation, KudosReact):
        base = sanitize(mutation.to_payload(), doc_path)
        payload = base.cleaned
        kudos_id = _require_text(payload, "kudosId", doc_path)
        emoji = _require_text(payload, "emoji", doc_path)
        by = _text(payload.get("by")) or "Crew"
        return KudosReact(kudos_id=kudos_id, emoji=emoji, by=by), base.report

    if isinstance(mutation, MediaUpload):
        base = sanitize(mutation.to_payload(), doc_path)
        media_id = _require_text(base.cleaned, "mediaId", doc_path)
        return MediaUpload(media_id=media_id), base.report

    if isinstance(mutation, UserUpdate):
        base = sanitize(mutation.to_payload(), doc_path)
        user_id = _require_text(base.cleaned, "userId", doc_path)
        changes = base.cleaned.get("changes")
        if not isinstance(changes, dict):
            raise ValidationError("changes", doc_path, "changes must be an object")
        return UserUpdate(user_id=user_id, changes=changes), base.report

    if isinstance(mutation, CustomOp):
        base = sanitize(mutation.payload, doc_path)
        payload = base.cleaned
        if not isinstance(payload, dict):
            raise ValidationError("payload", doc_path, "payload must be an object")
        _require_text(payload, "path", doc_path)
        data = payload.get("data", {})
        if not isinstance(data, dict):
            raise ValidationError("data", doc_path, "data must be an object")
        return CustomOp(payload=payload), base.report

    raise ValidationError("type", doc_path, f"unsupported mutation {type(mutation).__name__}")
