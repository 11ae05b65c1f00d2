"""Tests for document schemas and mutation preparation."""

from __future__ import annotations

import math
from typing import Any

import pytest

from crew_sync.core.entities import DocumentKind
from crew_sync.core.operations import (
    CustomOp,
    JobAdd,
    JobDelete,
    JobUpdate,
    KudosReact,
    MediaUpload,
    PolicyUpdate,
    UserUpdate,
)
from crew_sync.errors import ValidationError
from crew_sync.sanitize import UNDEFINED, prepare_document, prepare_mutation
from crew_sync.sanitize.schema import to_number


class TestToNumber:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            (5, 5),
            (2.5, 2.5),
            ("$1,200", 1200),
            (" 3.75 ", 3.75),
            ("", None),
            ("abc", None),
            (math.nan, None),
            (True, None),
            (None, None),
        ],
    )
    def test_coercion(self, raw: Any, expected: Any) -> None:
        assert to_number(raw) == expected


class TestJobDocument:
    """Tests for job normalization."""

    def test_full_job_gets_defaults(self, make_job: Any) -> None:
        result = prepare_document(DocumentKind.JOB, make_job(), "jobs/42")
        job = result.cleaned

        assert job["id"] == 42
        assert job["notes"] == ""
        assert job["houseTier"] == 1
        assert job["vip"] is False
        assert job["bothCrews"] is False
        assert result.report.is_empty

    def test_missing_required_field_names_field_and_path(self, make_job: Any) -> None:
        job = make_job()
        del job["client"]

        with pytest.raises(ValidationError) as exc_info:
            prepare_document(DocumentKind.JOB, job, "jobs/42")

        assert exc_info.value.field == "client"
        assert exc_info.value.doc_path == "jobs/42"

    def test_blank_required_field_rejected(self, make_job: Any) -> None:
        with pytest.raises(ValidationError, match="scope"):
            prepare_document(DocumentKind.JOB, make_job(scope="   "), "jobs/42")

    def test_non_numeric_id_rejected(self, make_job: Any) -> None:
        with pytest.raises(ValidationError) as exc_info:
            prepare_document(DocumentKind.JOB, make_job(job_id="abc"), "jobs/abc")

        assert exc_info.value.field == "id"

    def test_string_id_coerced(self, make_job: Any) -> None:
        result = prepare_document(DocumentKind.JOB, make_job(job_id="7"), "jobs/7")

        assert result.cleaned["id"] == 7
        assert "id" in result.report.numeric_corrections

    def test_numeric_fields_coerced(self, make_job: Any) -> None:
        result = prepare_document(
            DocumentKind.JOB,
            make_job(rehangPrice="$1,250", lifetimeSpend=math.nan, vip="yes"),
            "jobs/42",
        )
        job = result.cleaned

        assert job["rehangPrice"] == 1250
        assert job["lifetimeSpend"] is None
        assert job["vip"] is True

    def test_house_tier_clamped(self, make_job: Any) -> None:
        result = prepare_document(DocumentKind.JOB, make_job(houseTier=9), "jobs/42")

        assert result.cleaned["houseTier"] == 5
        assert any("clamped" in w for w in result.report.warnings)

    def test_both_crews_derived_from_crew(self, make_job: Any) -> None:
        result = prepare_document(DocumentKind.JOB, make_job(crew="Both Crews"), "jobs/42")

        assert result.cleaned["bothCrews"] is True

    def test_partial_skips_absent_required_fields(self) -> None:
        result = prepare_document(
            DocumentKind.JOB, {"id": 42, "notes": " gate code 12 "}, "jobs/42", partial=True
        )

        assert result.cleaned == {"id": 42, "notes": "gate code 12"}

    def test_partial_still_rejects_blanked_required_field(self) -> None:
        with pytest.raises(ValidationError, match="client"):
            prepare_document(DocumentKind.JOB, {"id": 42, "client": ""}, "jobs/42", partial=True)

    def test_permissive_fills_defaults(self) -> None:
        result = prepare_document(DocumentKind.JOB, {"id": 3}, "jobs/3", permissive=True)

        assert result.cleaned["crew"] == "Crew Alpha"
        assert result.cleaned["client"] == "Client"
        assert result.report.warnings

    def test_unparsable_updated_at_dropped(self, make_job: Any) -> None:
        result = prepare_document(DocumentKind.JOB, make_job(updatedAt="soon"), "jobs/42")

        assert "updatedAt" not in result.cleaned
        assert "updatedAt" in result.report.removed_paths

    def test_not_an_object_rejected(self) -> None:
        with pytest.raises(ValidationError, match="must be an object"):
            prepare_document(DocumentKind.JOB, [1, 2], "jobs/1")

    def test_idempotent(self, make_job: Any) -> None:
        raw = make_job(
            job_id="42",
            client="  Smith ",
            houseTier="4",
            rehangPrice="$300",
            vip=1,
            extra=UNDEFINED,
        )
        first = prepare_document(DocumentKind.JOB, raw, "jobs/42")
        second = prepare_document(DocumentKind.JOB, first.cleaned, "jobs/42")

        assert second.cleaned == first.cleaned
        assert second.report.is_empty


class TestPolicyDocument:
    def test_defaults(self) -> None:
        result = prepare_document(DocumentKind.POLICY, {}, "config/policy")

        assert result.cleaned == {
            "cutoffDateISO": "2025-12-31",
            "blockedClients": [],
            "maxJobsPerDay": 2,
        }

    def test_blocked_clients_cleaned(self) -> None:
        result = prepare_document(
            DocumentKind.POLICY,
            {"blockedClients": [" Acme ", "", None, "Bob"], "maxJobsPerDay": "3"},
            "config/policy",
        )

        assert result.cleaned["blockedClients"] == ["Acme", "Bob"]
        assert result.cleaned["maxJobsPerDay"] == 3

    def test_idempotent(self) -> None:
        first = prepare_document(
            DocumentKind.POLICY, {"maxJobsPerDay": -1, "blockedClients": "x"}, "config/policy"
        )
        second = prepare_document(DocumentKind.POLICY, first.cleaned, "config/policy")

        assert second.cleaned == first.cleaned
        assert second.report.is_empty


class TestPrepareMutation:
    """Tests for prepare_mutation()."""

    def test_job_add_reports_prefixed_paths(self, make_job: Any) -> None:
        cleaned, report = prepare_mutation(JobAdd(job=make_job(client=" Smith ")))

        assert isinstance(cleaned, JobAdd)
        assert cleaned.job["client"] == "Smith"
        assert report.string_corrections == ["job.client"]

    def test_job_update_is_partial(self) -> None:
        cleaned, _ = prepare_mutation(JobUpdate(job={"id": 42, "scope": "Take down"}))

        assert cleaned.job == {"id": 42, "scope": "Take down"}

    def test_job_delete_coerces_id(self) -> None:
        cleaned, report = prepare_mutation(JobDelete(job_id="9"))  # type: ignore[arg-type]

        assert cleaned == JobDelete(job_id=9)
        assert report.numeric_corrections == ["jobId"]

    def test_policy_update(self) -> None:
        cleaned, _ = prepare_mutation(PolicyUpdate(policy={"maxJobsPerDay": 4}))

        assert cleaned.policy["maxJobsPerDay"] == 4

    def test_kudos_requires_emoji(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            prepare_mutation(KudosReact(kudos_id="k1", emoji=" "))

        assert exc_info.value.field == "emoji"
        assert exc_info.value.doc_path == "kudos/k1"

    def test_kudos_defaults_actor(self) -> None:
        cleaned, _ = prepare_mutation(KudosReact(kudos_id="k1", emoji="🔥", by=""))

        assert cleaned == KudosReact(kudos_id="k1", emoji="🔥", by="Crew")

    def test_media_requires_id(self) -> None:
        with pytest.raises(ValidationError, match="mediaId"):
            prepare_mutation(MediaUpload(media_id=""))

    def test_user_update_requires_object_changes(self) -> None:
        with pytest.raises(ValidationError, match="changes"):
            prepare_mutation(UserUpdate(user_id="u1", changes="x"))  # type: ignore[arg-type]

    def test_custom_requires_path(self) -> None:
        with pytest.raises(ValidationError, match="path"):
            prepare_mutation(CustomOp(payload={"data": {}}))

    def test_custom_sanitized(self) -> None:
        cleaned, report = prepare_mutation(
            CustomOp(payload={"path": "notes/n1", "data": {"text": " hi ", "gone": UNDEFINED}})
        )

        assert cleaned.payload == {"path": "notes/n1", "data": {"text": "hi"}}
        assert report.removed_paths == ["data.gone"]
